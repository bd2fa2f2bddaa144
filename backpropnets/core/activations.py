"""Activation functions for backpropnets.

Every activation exposes ``forward(x)`` and ``backward(y)``. ``backward``
receives the value returned by ``forward`` rather than the pre-activation
input, so derivatives are expressed in terms of the layer output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Optional

import numpy as np

from .errors import ConfigurationError
from .types import Array


def sigmoid(x: Array) -> Array:
    """Return the logistic sigmoid of ``x``."""

    return 1.0 / (1.0 + np.exp(-x))


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def softmax(x: Array) -> Array:
    """Return a probability distribution over the last axis of ``x``."""

    shifted = x - np.max(x, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


class Activation:
    """Base class for activation functions."""

    name: str = ""

    def forward(self, x: Array) -> Array:
        raise NotImplementedError

    def backward(self, output: Array) -> Array:
        raise NotImplementedError

    def options(self) -> Dict[str, float]:
        """Constructor options needed to rebuild this activation from its name."""

        return {}

    def __repr__(self) -> str:
        opts = ", ".join(f"{k}={v}" for k, v in self.options().items())
        return f"{type(self).__name__}({opts})"


class Sigmoid(Activation):
    name = "sigmoid"

    def forward(self, x: Array) -> Array:
        return sigmoid(x)

    def backward(self, output: Array) -> Array:
        return output * (1.0 - output)


class Tanh(Activation):
    name = "tanh"

    def forward(self, x: Array) -> Array:
        return np.tanh(x)

    def backward(self, output: Array) -> Array:
        return 1.0 - output**2


class ReLU(Activation):
    name = "relu"

    def forward(self, x: Array) -> Array:
        return relu(x)

    def backward(self, output: Array) -> Array:
        return (output > 0).astype(float)


@dataclass(repr=False)
class LeakyReLU(Activation):
    alpha: float = 0.01
    name = "leaky_relu"

    def forward(self, x: Array) -> Array:
        return np.where(x > 0, x, self.alpha * x)

    def backward(self, output: Array) -> Array:
        return np.where(output > 0, 1.0, self.alpha)

    def options(self) -> Dict[str, float]:
        return {"alpha": self.alpha}


@dataclass(repr=False)
class ELU(Activation):
    alpha: float = 1.0
    name = "elu"

    def forward(self, x: Array) -> Array:
        return np.where(x > 0, x, self.alpha * (np.exp(np.minimum(x, 0.0)) - 1.0))

    def backward(self, output: Array) -> Array:
        # y + alpha == alpha * exp(x) on the negative branch
        return np.where(output > 0, 1.0, output + self.alpha)

    def options(self) -> Dict[str, float]:
        return {"alpha": self.alpha}


@dataclass(repr=False)
class Swish(Activation):
    """``x * sigmoid(beta * x)``.

    The derivative cannot be recovered from the output alone, so the last
    forward input is kept and used by :meth:`backward`.
    """

    beta: float = 1.0
    name = "swish"
    _last_input: Optional[Array] = field(default=None, init=False, compare=False)

    def forward(self, x: Array) -> Array:
        x = np.asarray(x, dtype=float)
        self._last_input = x.copy()
        return x * sigmoid(self.beta * x)

    def backward(self, output: Array) -> Array:
        if self._last_input is None:
            raise RuntimeError("Swish.backward called before forward")
        s = sigmoid(self.beta * self._last_input)
        scaled = self.beta * output
        return scaled + s * (1.0 - scaled)

    def options(self) -> Dict[str, float]:
        return {"beta": self.beta}


class Softmax(Activation):
    """Vector-valued softmax.

    ``backward`` returns the diagonal of the Jacobian, ``o * (1 - o)``. This
    is an approximation for multi-class backpropagation; the exact shortcut is
    taken by the cross-entropy loss when it is paired with this activation.
    """

    name = "softmax"

    def forward(self, x: Array) -> Array:
        return softmax(np.asarray(x, dtype=float))

    def backward(self, output: Array) -> Array:
        return output * (1.0 - output)


class Linear(Activation):
    name = "linear"

    def forward(self, x: Array) -> Array:
        return np.array(x, dtype=float, copy=True)

    def backward(self, output: Array) -> Array:
        return np.ones_like(output, dtype=float)


@dataclass(repr=False)
class CustomActivation(Activation):
    """Caller-supplied activation.

    By default both callables take and return one float and are applied to
    each neuron of the layer. With ``vector_valued=True`` they receive the
    whole layer vector instead. ``backward_fn`` must take the forward output.
    Custom activations are not stored by name when a network is serialized
    and must be re-bound on load.
    """

    forward_fn: Callable[..., object] = None  # type: ignore[assignment]
    backward_fn: Callable[..., object] = None  # type: ignore[assignment]
    vector_valued: bool = False
    name = "custom"

    def __post_init__(self) -> None:
        if not callable(self.forward_fn) or not callable(self.backward_fn):
            raise ConfigurationError("CustomActivation needs forward_fn and backward_fn callables")

    def forward(self, x: Array) -> Array:
        return self._apply(self.forward_fn, x)

    def backward(self, output: Array) -> Array:
        return self._apply(self.backward_fn, output)

    def _apply(self, fn: Callable[..., object], values: Array) -> Array:
        values = np.asarray(values, dtype=float)
        if self.vector_valued:
            result = np.asarray(fn(values), dtype=float)
            if result.shape != values.shape:
                raise ValueError(
                    f"Custom activation returned shape {result.shape}, expected {values.shape}"
                )
            return result
        return np.array([float(fn(float(v))) for v in values.ravel()]).reshape(values.shape)


class ActivationRegistry:
    """Central registry mapping symbols to activation classes."""

    def __init__(self) -> None:
        self._registry: Dict[str, Callable[..., Activation]] = {}

    def register(self, name: str, factory: Callable[..., Activation]) -> None:
        self._registry[name] = factory

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def create(self, name: str, **options: float) -> Activation:
        key = str(name).lower()
        if key not in self._registry:
            available = ", ".join(self.names())
            raise ConfigurationError(
                f"Unknown activation function {name!r}. Available activations: {available}"
            )
        try:
            return self._registry[key](**options)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid options for activation {name!r}: {options}") from exc


REGISTRY = ActivationRegistry()
REGISTRY.register("sigmoid", Sigmoid)
REGISTRY.register("tanh", Tanh)
REGISTRY.register("relu", ReLU)
REGISTRY.register("leaky_relu", LeakyReLU)
REGISTRY.register("elu", ELU)
REGISTRY.register("swish", Swish)
REGISTRY.register("softmax", Softmax)
REGISTRY.register("linear", Linear)


def create(name: str, **options: float) -> Activation:
    """Instantiate the activation registered under ``name``."""

    return REGISTRY.create(name, **options)


def resolve(spec: object) -> Activation:
    """Turn a symbol, ``(symbol, options)`` pair or instance into a fresh activation."""

    if isinstance(spec, Activation):
        if isinstance(spec, CustomActivation):
            return spec
        return REGISTRY.create(spec.name, **spec.options())
    if isinstance(spec, str):
        return REGISTRY.create(spec)
    if (
        isinstance(spec, (tuple, list))
        and len(spec) == 2
        and isinstance(spec[0], str)
        and isinstance(spec[1], Mapping)
    ):
        return REGISTRY.create(spec[0], **dict(spec[1]))
    raise ConfigurationError(f"Cannot build an activation from {spec!r}")


__all__ = [
    "Activation",
    "ActivationRegistry",
    "CustomActivation",
    "ELU",
    "LeakyReLU",
    "Linear",
    "REGISTRY",
    "ReLU",
    "Sigmoid",
    "Softmax",
    "Swish",
    "Tanh",
    "create",
    "relu",
    "resolve",
    "sigmoid",
    "softmax",
]
