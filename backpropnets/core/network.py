"""Multilayer feed-forward network trained by backpropagation.

The network keeps one weight matrix per pair of consecutive layers, shaped
``(source_size + bias, target_size)``, and one activation buffer per layer.
Buffers of every layer but the last carry a trailing bias unit fixed at
``1.0`` unless bias is disabled. Buffers are reused between calls; anything
handed back to callers is a copy.

    net = Network([4, 3, 2])        # 4 inputs, 1 hidden layer of 3, 2 outputs
    for example, result in zip(examples, results):
        net.train(example, result)
    net.eval([12, 48, 12, 25])
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..training.losses import REGISTRY as LOSS_REGISTRY
from ..training.losses import CrossEntropy, Loss
from ..training.metrics import is_correct
from . import activations as act
from .errors import ConfigurationError, DimensionError
from .initializers import make_initializer
from .optimizers import Optimizer
from .optimizers import create as create_optimizer
from .regularization import Regularizer
from .regularization import resolve as resolve_regularization
from .types import Array, LossSelection, validate_architecture

logger = logging.getLogger(__name__)

NONFINITE_POLICIES = ("warn", "raise", "ignore")

_PARAMETERS = (
    "learning_rate",
    "momentum",
    "disable_bias",
    "activation",
    "weight_init",
    "loss",
    "optimizer",
    "nonfinite",
    "regularization",
)


class Network:
    """Fully-connected feed-forward network.

    Parameters
    ----------
    structure:
        Neurons per layer, input layer first. At least two positive entries.
    activation:
        One activation for every non-input layer, or a list with one entry per
        non-input layer. Entries are symbols (``"tanh"``), ``(symbol, options)``
        pairs, :class:`~backpropnets.core.activations.Activation` instances or
        :class:`~backpropnets.core.activations.CustomActivation`. Defaults to
        sigmoid everywhere, with a softmax output under cross-entropy.
    weight_init:
        ``"uniform"``, ``"xavier"``, ``"he"`` or a callable ``f(layer, i, j)``.
    loss:
        ``"mse"`` or ``"cross_entropy"``.
    learning_rate, momentum:
        Coefficients of the built-in update rule.
    optimizer:
        Optional optimizer (instance or symbol) replacing the built-in rule.
    seed, rng:
        Source of randomness for weight initialisation and shuffling.
    nonfinite:
        What to do with NaN or infinite inputs and targets: ``"warn"``
        (default, values propagate), ``"raise"`` or ``"ignore"``.
    regularization:
        Optional weight penalty: ``"l1"``, ``"l2"``, ``"elastic_net"``, a
        mapping such as ``{"name": "l2", "lam": 0.001}`` or a
        :class:`~backpropnets.core.regularization.Regularizer`. Its gradient
        joins every weight update and its penalty is added to training loss.
    """

    def __init__(
        self,
        structure: Sequence[int],
        activation: Any = None,
        weight_init: Any = "uniform",
        loss: str = "mse",
        *,
        learning_rate: float = 0.25,
        momentum: float = 0.1,
        disable_bias: bool = False,
        optimizer: Optimizer | str | None = None,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
        nonfinite: str = "warn",
        regularization: Any = None,
    ) -> None:
        self._structure = validate_architecture(structure)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self._disable_bias = bool(disable_bias)
        self._weight_init = weight_init
        self._initializer = make_initializer(weight_init, self._structure, self.rng)
        self._loss: Loss = LOSS_REGISTRY.get(loss)
        self._activation_spec = activation
        self._activations = self._resolve_activations(activation)
        self.optimizer = self._resolve_optimizer(optimizer)
        self.nonfinite = _check_policy(nonfinite)
        self.regularization: Optional[Regularizer] = resolve_regularization(regularization)

        self._weights: Optional[List[Array]] = None
        self._last_changes: Optional[List[Array]] = None
        self._nodes: Optional[List[Array]] = None
        self._forwarded = False

    # ------------------------------------------------------------------
    # Configuration

    @property
    def structure(self) -> tuple:
        return self._structure

    @property
    def disable_bias(self) -> bool:
        return self._disable_bias

    @property
    def loss_name(self) -> str:
        return self._loss.name

    @property
    def activation_names(self) -> List[str]:
        return [fn.name for fn in self._activations]

    @property
    def activation_functions(self) -> List[act.Activation]:
        return list(self._activations)

    @property
    def activation_explicit(self) -> bool:
        return self._activation_spec is not None

    @property
    def weight_init_name(self) -> str:
        return self._initializer.name

    def with_loss(self, loss: str) -> LossSelection:
        """Select the loss and report whether the output activation changed.

        Choosing cross-entropy without an explicit activation switches the
        output layer to softmax.
        """

        previous = self._activations[-1].name
        self._loss = LOSS_REGISTRY.get(loss)
        if self._activation_spec is None:
            self._activations = self._resolve_activations(None)
        current = self._activations[-1].name
        changed = current != previous
        if changed:
            logger.info(
                "Loss %s switched the output activation from %s to %s",
                self._loss.name,
                previous,
                current,
            )
        return LossSelection(
            loss=self._loss.name,
            output_activation=current,
            output_activation_changed=changed,
        )

    def set_activation(self, activation: Any) -> None:
        self._activations = self._resolve_activations(activation)
        self._activation_spec = activation

    def set_parameters(self, **params: Any) -> "Network":
        """Update configuration values by name and return the network."""

        unknown = set(params) - set(_PARAMETERS)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(sorted(unknown))}")
        if "learning_rate" in params:
            self.learning_rate = float(params["learning_rate"])
        if "momentum" in params:
            self.momentum = float(params["momentum"])
        if "nonfinite" in params:
            self.nonfinite = _check_policy(params["nonfinite"])
        if "activation" in params:
            self.set_activation(params["activation"])
        if "loss" in params:
            self.with_loss(params["loss"])
        if "optimizer" in params:
            self.optimizer = self._resolve_optimizer(params["optimizer"])
        if "regularization" in params:
            self.regularization = resolve_regularization(params["regularization"])
        if "weight_init" in params:
            # Existing weights are kept until the next init_network call.
            self._initializer = make_initializer(params["weight_init"], self._structure, self.rng)
            self._weight_init = params["weight_init"]
        if "disable_bias" in params and bool(params["disable_bias"]) != self._disable_bias:
            self._disable_bias = bool(params["disable_bias"])
            self._weights = self._last_changes = self._nodes = None
            self._forwarded = False
        return self

    def get_parameters(self) -> Dict[str, Any]:
        return {
            "learning_rate": self.learning_rate,
            "momentum": self.momentum,
            "disable_bias": self._disable_bias,
            "activation": self.activation_names,
            "weight_init": self.weight_init_name,
            "loss": self.loss_name,
            "optimizer": None if self.optimizer is None else self.optimizer.name,
            "nonfinite": self.nonfinite,
            "regularization": None if self.regularization is None else self.regularization.name,
        }

    # ------------------------------------------------------------------
    # Introspection

    @property
    def initialized(self) -> bool:
        return self._weights is not None

    @property
    def weights(self) -> List[Array]:
        return [w.copy() for w in self._weights or []]

    @property
    def last_changes(self) -> List[Array]:
        return [c.copy() for c in self._last_changes or []]

    @property
    def activation_nodes(self) -> List[Array]:
        return [n.copy() for n in self._nodes or []]

    def parameter_count(self) -> int:
        return int(sum(int(w.size) for w in self._weights or []))

    # ------------------------------------------------------------------
    # Lifecycle

    def init_network(self) -> "Network":
        """Create (or re-randomise) weights and reset all training state."""

        bias = 0 if self._disable_bias else 1
        dims = self._structure
        self._init_nodes()
        self._weights = [
            np.asarray(self._initializer.matrix(n, (dims[n] + bias, dims[n + 1])), dtype=float)
            for n in range(len(dims) - 1)
        ]
        self._last_changes = [np.zeros_like(w) for w in self._weights]
        if self.optimizer is not None:
            self.optimizer.reset()
        logger.debug(
            "Initialised network %s with %s weights (%d parameters)",
            list(dims),
            self._initializer.name,
            self.parameter_count(),
        )
        return self

    def _init_nodes(self) -> None:
        bias = 0 if self._disable_bias else 1
        nodes = [np.ones(size + bias, dtype=float) for size in self._structure[:-1]]
        nodes.append(np.ones(self._structure[-1], dtype=float))
        self._nodes = nodes
        self._forwarded = False

    def load_weights(
        self,
        weights: Sequence[Array],
        last_changes: Sequence[Array] | None = None,
    ) -> None:
        """Replace weights (and optionally the momentum buffer) after checking shapes."""

        expected = self._weight_shapes()
        if len(weights) != len(expected):
            raise ConfigurationError(f"Expected {len(expected)} weight matrices, got {len(weights)}")
        arrays = [np.array(w, dtype=float) for w in weights]
        for idx, (arr, shape) in enumerate(zip(arrays, expected)):
            if arr.shape != shape:
                raise ConfigurationError(f"Weight W{idx} has shape {arr.shape}, expected {shape}")
        if last_changes is None:
            changes = [np.zeros_like(w) for w in arrays]
        else:
            changes = [np.array(c, dtype=float) for c in last_changes]
            if [c.shape for c in changes] != expected:
                raise ConfigurationError("Last-change buffer does not match the weight shapes")
        if self._nodes is None:
            self._init_nodes()
        self._weights = arrays
        self._last_changes = changes

    def load_activation_nodes(self, nodes: Sequence[Array]) -> None:
        if self._nodes is None:
            self._init_nodes()
        arrays = [np.array(n, dtype=float) for n in nodes]
        if [a.shape for a in arrays] != [n.shape for n in self._nodes]:
            raise ConfigurationError("Activation buffers do not match the network layout")
        for buf, values in zip(self._nodes, arrays):
            buf[...] = values
        self._forwarded = True

    def state_dict(self) -> Dict[str, Array]:
        if self._weights is None:
            self.init_network()
        state = {f"W{idx}": w.copy() for idx, w in enumerate(self._weights)}
        state.update({f"L{idx}": c.copy() for idx, c in enumerate(self._last_changes)})
        return state

    def load_state_dict(self, state: Mapping[str, Array]) -> None:
        count = len(self._structure) - 1
        for prefix in ("W", "L"):
            for idx in range(count):
                if f"{prefix}{idx}" not in state:
                    raise KeyError(f"Missing {prefix}{idx} in state dict")
        self.load_weights(
            [state[f"W{idx}"] for idx in range(count)],
            [state[f"L{idx}"] for idx in range(count)],
        )

    # ------------------------------------------------------------------
    # Inference

    def eval(self, inputs: Sequence[float]) -> Array:
        """Return a copy of the output layer for ``inputs``."""

        x = self._check_vector(inputs, self._structure[0], "inputs")
        if self._weights is None:
            self.init_network()
        self._feedforward(x)
        return self._nodes[-1].copy()

    def eval_result(self, inputs: Sequence[float]) -> int:
        """Return the index of the most active output neuron."""

        return int(np.argmax(self.eval(inputs)))

    def evaluate(
        self,
        inputs: Sequence[Sequence[float]],
        expected: Sequence[Sequence[float]],
    ) -> tuple:
        """Return ``(mean loss, accuracy)`` over a dataset without updating weights."""

        return self.evaluate_pairs(self.prepare_examples(inputs, expected))

    def evaluate_pairs(self, pairs: Sequence[tuple]) -> tuple:
        """Like :meth:`evaluate` for pairs returned by :meth:`prepare_examples`."""

        if not pairs:
            raise ConfigurationError("evaluate needs at least one example")
        if self._weights is None:
            self.init_network()
        total = 0.0
        hits = 0
        for x, y in pairs:
            self._feedforward(x)
            total += self.calculate_loss(y, self._nodes[-1])
            hits += is_correct(y, self._nodes[-1])
        count = len(pairs)
        return total / count + self.penalty(), hits / count

    def penalty(self) -> float:
        """Regularization penalty of the current weights (``0.0`` without one)."""

        if self.regularization is None or self._weights is None:
            return 0.0
        return self.regularization.penalty(self._weights)

    # ------------------------------------------------------------------
    # Training

    def train(self, inputs: Sequence[float], expected: Sequence[float]) -> float:
        """Run one forward and backward pass and return the loss before the update.

        The loss includes the regularization penalty when one is configured.
        """

        x = self._check_vector(inputs, self._structure[0], "inputs")
        y = self._check_vector(expected, self._structure[-1], "outputs")
        return self._train_vectors(x, y)

    def _train_vectors(self, x: Array, y: Array) -> float:
        if self._weights is None:
            self.init_network()
        self._feedforward(x)
        loss = self.calculate_loss(y, self._nodes[-1]) + self.penalty()
        self._backpropagate(y)
        return loss

    def train_batch(
        self,
        inputs: Sequence[Sequence[float]],
        expected: Sequence[Sequence[float]],
    ) -> float:
        """Train example by example and return the mean loss."""

        pairs = self.prepare_examples(inputs, expected)
        if not pairs:
            raise ConfigurationError("train_batch needs at least one example")
        return self.train_pairs(pairs) / len(pairs)

    def prepare_examples(
        self,
        inputs: Sequence[Sequence[float]],
        expected: Sequence[Sequence[float]],
    ) -> List[tuple]:
        """Check every example against the layout and return ``(input, target)`` arrays."""

        if len(inputs) != len(expected):
            raise ConfigurationError(
                f"Got {len(inputs)} inputs but {len(expected)} expected outputs"
            )
        return [
            (
                self._check_vector(x, self._structure[0], "inputs"),
                self._check_vector(y, self._structure[-1], "outputs"),
            )
            for x, y in zip(inputs, expected)
        ]

    def train_pairs(self, pairs: Sequence[tuple]) -> float:
        """Train on pairs returned by :meth:`prepare_examples`; return the summed loss."""

        total = 0.0
        for x, y in pairs:
            total += self._train_vectors(x, y)
        return total

    @property
    def output(self) -> Array:
        """Output layer of the most recent forward pass."""

        if not self._forwarded:
            raise RuntimeError("No forward pass has run since the network was initialised")
        return self._nodes[-1].copy()

    def train_epochs(
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
        callback: Callable[[int, float, float], None] | None = None,
        validation_inputs: Sequence[Sequence[float]] | None = None,
        validation_outputs: Sequence[Sequence[float]] | None = None,
    ) -> List[float]:
        """Train for ``epochs`` passes over the dataset and return the training loss per epoch.

        With validation data, early stopping follows the validation loss.
        """

        from ..training.trainer import Trainer

        history = Trainer(self).run(
            inputs,
            outputs,
            epochs=epochs,
            batch_size=batch_size,
            shuffle=shuffle,
            random_seed=random_seed,
            early_stopping_patience=early_stopping_patience,
            min_delta=min_delta,
            callback=callback,
            validation_inputs=validation_inputs,
            validation_outputs=validation_outputs,
        )
        return history.losses

    def calculate_loss(self, expected: Sequence[float], actual: Sequence[float]) -> float:
        return self._loss.loss(
            np.asarray(expected, dtype=float),
            np.asarray(actual, dtype=float),
            self._activations[-1],
        )

    # ------------------------------------------------------------------
    # Propagation

    def _feedforward(self, x: Array) -> None:
        nodes = self._nodes
        nodes[0][: self._structure[0]] = x
        for n, W in enumerate(self._weights):
            z = nodes[n] @ W
            nodes[n + 1][: self._structure[n + 1]] = self._activations[n].forward(z)
        self._forwarded = True

    def _backpropagate(self, expected: Array) -> None:
        deltas = self._deltas(expected)
        if self.optimizer is None:
            self._momentum_update(deltas)
        else:
            self._optimizer_update(deltas)

    def _deltas(self, expected: Array) -> List[Array]:
        nodes = self._nodes
        weights = self._weights
        deltas: List[Array] = [None] * len(weights)  # type: ignore[list-item]
        deltas[-1] = self._loss.output_delta(expected, nodes[-1], self._activations[-1])
        for layer in range(len(weights) - 1, 0, -1):
            size = self._structure[layer]
            error = weights[layer][:size] @ deltas[layer]
            deltas[layer - 1] = self._activations[layer - 1].backward(nodes[layer][:size]) * error
        return deltas

    def _momentum_update(self, deltas: List[Array]) -> None:
        for n, W in enumerate(self._weights):
            step = np.outer(self._nodes[n], deltas[n])
            if self.regularization is not None:
                step -= self.regularization.gradient(W)
            change = self.learning_rate * step + self.momentum * self._last_changes[n]
            W += change
            self._last_changes[n][...] = change

    def _optimizer_update(self, deltas: List[Array]) -> None:
        groups = {f"W{n}": (W, self._gradient(n, deltas[n])) for n, W in enumerate(self._weights)}
        updated = self.optimizer.update_many(groups)
        for n, W in enumerate(self._weights):
            W[...] = updated[f"W{n}"]

    # ------------------------------------------------------------------
    # Helpers

    def _gradient(self, layer: int, delta: Array) -> Array:
        grad = -np.outer(self._nodes[layer], delta)
        if self.regularization is not None:
            grad += self.regularization.gradient(self._weights[layer])
        return grad

    def _weight_shapes(self) -> List[tuple]:
        bias = 0 if self._disable_bias else 1
        dims = self._structure
        return [(dims[n] + bias, dims[n + 1]) for n in range(len(dims) - 1)]

    def _resolve_activations(self, spec: Any) -> List[act.Activation]:
        count = len(self._structure) - 1
        if spec is None:
            names = ["sigmoid"] * count
            if isinstance(self._loss, CrossEntropy):
                names[-1] = "softmax"
            return [act.create(name) for name in names]
        if isinstance(spec, (list, tuple)) and not _is_option_pair(spec):
            if len(spec) != count:
                raise ConfigurationError(
                    f"Expected {count} activations (one per non-input layer), got {len(spec)}"
                )
            return [act.resolve(item) for item in spec]
        return [act.resolve(spec) for _ in range(count)]

    @staticmethod
    def _resolve_optimizer(optimizer: Optimizer | str | None) -> Optimizer | None:
        if optimizer is None or isinstance(optimizer, Optimizer):
            return optimizer
        if isinstance(optimizer, str):
            return create_optimizer(optimizer)
        if isinstance(optimizer, Mapping):
            options = dict(optimizer)
            name = options.pop("name", None)
            if name is None:
                raise ConfigurationError("Optimizer mapping needs a 'name' entry")
            return create_optimizer(name, **options)
        raise ConfigurationError(f"Cannot build an optimizer from {optimizer!r}")

    def _check_vector(self, values: Sequence[float], size: int, kind: str) -> Array:
        vector = np.asarray(values, dtype=float)
        if vector.ndim != 1 or vector.shape[0] != size:
            received = vector.shape[0] if vector.ndim == 1 else int(vector.size)
            raise DimensionError(kind, size, received)
        if self.nonfinite != "ignore" and not np.all(np.isfinite(vector)):
            message = f"Non-finite values in {kind}: {vector.tolist()}"
            if self.nonfinite == "raise":
                raise ValueError(message)
            warnings.warn(message, RuntimeWarning, stacklevel=3)
        return vector

    def __repr__(self) -> str:
        return (
            f"Network(structure={list(self._structure)}, activation={self.activation_names}, "
            f"loss={self.loss_name!r}, learning_rate={self.learning_rate}, "
            f"momentum={self.momentum})"
        )


def _is_option_pair(spec: Sequence[Any]) -> bool:
    return len(spec) == 2 and isinstance(spec[0], str) and isinstance(spec[1], Mapping)


def _check_policy(policy: str) -> str:
    if policy not in NONFINITE_POLICIES:
        raise ConfigurationError(
            f"nonfinite must be one of {NONFINITE_POLICIES}, got {policy!r}"
        )
    return policy


__all__ = ["NONFINITE_POLICIES", "Network"]
