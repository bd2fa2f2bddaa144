"""Deterministic epoch/batch training loops for backpropnets."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Sequence

import numpy as np

from ..core.errors import ConfigurationError
from ..core.network import Network
from ..core.types import EpochRecord, TrainingHistory
from .metrics import is_correct

logger = logging.getLogger(__name__)

EpochCallback = Callable[[int, float, float], None]


class Trainer:
    """Run epochs over a dataset with shuffling, mini-batches and early stopping.

    Each example updates the weights immediately; a batch only groups examples
    for loss bookkeeping. ``callbacks`` receive ``on_epoch(epoch, metrics)``
    (or are called as ``callback(epoch, metrics)``) after every epoch.
    """

    def __init__(self, network: Network, callbacks: Sequence[object] | None = None) -> None:
        self.network = network
        self.callbacks = list(callbacks or [])

    def run(
        self,
        inputs: Sequence[Sequence[float]],
        outputs: Sequence[Sequence[float]],
        epochs: int = 100,
        batch_size: int = 1,
        *,
        shuffle: bool = True,
        random_seed: int | None = None,
        early_stopping_patience: int | None = None,
        min_delta: float = 0.0,
        callback: EpochCallback | None = None,
        validation_inputs: Sequence[Sequence[float]] | None = None,
        validation_outputs: Sequence[Sequence[float]] | None = None,
    ) -> TrainingHistory:
        """Train for up to ``epochs`` epochs.

        When validation data is given, each epoch also evaluates it without
        updating weights, and early stopping monitors the validation loss
        instead of the training loss.
        """

        self._check_options(epochs, batch_size, early_stopping_patience)
        pairs = self.network.prepare_examples(inputs, outputs)
        if not pairs and epochs > 0:
            raise ConfigurationError("Training data is empty")
        validation = self._validation_pairs(validation_inputs, validation_outputs)

        rng = (
            np.random.default_rng(random_seed)
            if random_seed is not None
            else self.network.rng
        )
        history = TrainingHistory()
        best_loss = float("inf")
        epochs_no_improve = 0
        order = np.arange(len(pairs))

        for epoch in range(1, epochs + 1):
            if shuffle:
                order = rng.permutation(len(pairs))
            epoch_loss, epoch_acc = self._run_epoch(pairs, order, batch_size)
            val_loss = val_acc = None
            if validation is not None:
                val_loss, val_acc = self.network.evaluate_pairs(validation)
            record = EpochRecord(
                epoch=epoch,
                loss=epoch_loss,
                accuracy=epoch_acc,
                validation_loss=val_loss,
                validation_accuracy=val_acc,
            )
            history.records.append(record)
            self._emit_epoch(record, callback)

            if early_stopping_patience is not None:
                monitored = epoch_loss if val_loss is None else val_loss
                if best_loss - monitored > min_delta:
                    best_loss = monitored
                    epochs_no_improve = 0
                else:
                    epochs_no_improve += 1
                if epochs_no_improve >= early_stopping_patience:
                    history.stopped_early = True
                    logger.info(
                        "Early stopping after epoch %d: best %s loss %.6f, current %.6f",
                        epoch,
                        "training" if val_loss is None else "validation",
                        best_loss,
                        monitored,
                    )
                    break

        return history

    # ------------------------------------------------------------------
    # Internal helpers

    def _validation_pairs(self, inputs, outputs):
        if inputs is None and outputs is None:
            return None
        if inputs is None or outputs is None:
            raise ConfigurationError("validation_inputs and validation_outputs go together")
        pairs = self.network.prepare_examples(inputs, outputs)
        if not pairs:
            raise ConfigurationError("Validation data is empty")
        return pairs

    def _run_epoch(self, pairs, order: np.ndarray, batch_size: int) -> tuple[float, float]:
        total_loss = 0.0
        hits = 0
        for start in range(0, len(order), batch_size):
            batch = [pairs[i] for i in order[start : start + batch_size]]
            for example in batch:
                total_loss += self.network.train_pairs([example])
                hits += is_correct(example[1], self.network.output)
        count = len(order)
        return total_loss / count, hits / count

    def _emit_epoch(self, record: EpochRecord, callback: EpochCallback | None) -> None:
        logger.debug(
            "epoch=%d loss=%.6f accuracy=%.4f validation_loss=%s",
            record.epoch,
            record.loss,
            record.accuracy,
            record.validation_loss,
        )
        if callback is not None:
            callback(record.epoch, record.loss, record.accuracy)
        metrics: Dict[str, float] = {"loss": record.loss, "accuracy": record.accuracy}
        if record.validation_loss is not None:
            metrics["val_loss"] = record.validation_loss
            metrics["val_accuracy"] = record.validation_accuracy
        for cb in self.callbacks:
            if hasattr(cb, "on_epoch"):
                cb.on_epoch(record.epoch, metrics)  # type: ignore[attr-defined]
            elif callable(cb):
                cb(record.epoch, metrics)

    @staticmethod
    def _check_options(epochs: int, batch_size: int, patience: int | None) -> None:
        if epochs < 0:
            raise ConfigurationError(f"epochs must be non-negative, got {epochs}")
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {batch_size}")
        if patience is not None and patience < 1:
            raise ConfigurationError(
                f"early_stopping_patience must be at least 1, got {patience}"
            )


__all__ = ["Trainer"]
