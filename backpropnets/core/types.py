"""Core typing contracts for backpropnets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError

Array = np.ndarray

Architecture = Tuple[int, ...]


def validate_architecture(structure: Sequence[int]) -> Architecture:
    """Return ``structure`` as an immutable tuple or raise ``ConfigurationError``."""

    if structure is None:
        raise ConfigurationError("Architecture is required")
    dims = tuple(structure)
    if len(dims) < 2:
        raise ConfigurationError(
            f"Architecture needs at least an input and an output layer, got {list(dims)}"
        )
    for size in dims:
        if isinstance(size, bool) or not isinstance(size, (int, np.integer)):
            raise ConfigurationError(f"Layer sizes must be integers, got {size!r}")
        if size < 1:
            raise ConfigurationError(f"Layer sizes must be positive, got {list(dims)}")
    return tuple(int(size) for size in dims)


@dataclass(frozen=True)
class LossSelection:
    """Outcome of selecting a loss on a network.

    ``output_activation_changed`` is set when picking the loss switched the
    output layer activation (cross-entropy defaults the output to softmax).
    """

    loss: str
    output_activation: str
    output_activation_changed: bool = False


@dataclass(frozen=True)
class EpochRecord:
    """Loss and accuracy recorded for one training epoch.

    The validation fields stay ``None`` unless validation data was supplied.
    """

    epoch: int
    loss: float
    accuracy: float
    validation_loss: Optional[float] = None
    validation_accuracy: Optional[float] = None


@dataclass
class TrainingHistory:
    """Per-epoch results returned by :meth:`backpropnets.training.trainer.Trainer.run`."""

    records: List[EpochRecord] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def losses(self) -> List[float]:
        return [record.loss for record in self.records]

    @property
    def accuracies(self) -> List[float]:
        return [record.accuracy for record in self.records]

    @property
    def validation_losses(self) -> List[float]:
        return [r.validation_loss for r in self.records if r.validation_loss is not None]

    def __len__(self) -> int:
        return len(self.records)
