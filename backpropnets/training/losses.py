"""Loss registry and output-layer delta rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

import numpy as np

from ..core.activations import Activation, Softmax
from ..core.errors import ConfigurationError
from ..core.types import Array

EPSILON = 1e-12


@dataclass(frozen=True)
class Loss:
    """A loss and the delta it induces on the output layer.

    Deltas carry the descent direction: the negative gradient of the loss
    with respect to each output neuron's pre-activation.
    """

    name: str

    def __call__(self, expected: Array, actual: Array, activation: Activation | None = None) -> float:
        return self.loss(expected, actual, activation)

    def loss(self, expected: Array, actual: Array, activation: Activation | None = None) -> float:
        raise NotImplementedError

    def output_delta(self, expected: Array, actual: Array, activation: Activation) -> Array:
        raise NotImplementedError


@dataclass(frozen=True)
class MeanSquaredError(Loss):
    name: str = "mse"

    def loss(self, expected: Array, actual: Array, activation: Activation | None = None) -> float:
        diff = np.asarray(expected, dtype=float) - np.asarray(actual, dtype=float)
        return float(0.5 * np.sum(diff**2))

    def output_delta(self, expected: Array, actual: Array, activation: Activation) -> Array:
        return activation.backward(actual) * (expected - actual)


@dataclass(frozen=True)
class CrossEntropy(Loss):
    """Cross-entropy with predictions clamped into ``[EPSILON, 1 - EPSILON]``.

    With a softmax output the categorical form is used and the output delta is
    exactly ``expected - actual``. Any other output uses the per-unit binary
    form and applies the activation derivative explicitly.
    """

    name: str = "cross_entropy"

    def loss(self, expected: Array, actual: Array, activation: Activation | None = None) -> float:
        e = np.asarray(expected, dtype=float)
        p = np.clip(np.asarray(actual, dtype=float), EPSILON, 1.0 - EPSILON)
        if _is_softmax(activation):
            return float(-np.sum(e * np.log(p)))
        return float(-np.sum(e * np.log(p) + (1.0 - e) * np.log(1.0 - p)))

    def output_delta(self, expected: Array, actual: Array, activation: Activation) -> Array:
        if _is_softmax(activation):
            return expected - actual
        p = np.clip(actual, EPSILON, 1.0 - EPSILON)
        # -dL/dp for the per-unit form
        neg_grad = expected / p - (1.0 - expected) / (1.0 - p)
        return activation.backward(actual) * neg_grad


def _is_softmax(activation: Activation | None) -> bool:
    return isinstance(activation, Softmax)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, loss: Loss, *aliases: str) -> None:
        self._registry[loss.name] = loss
        for alias in aliases:
            self._registry[alias] = loss

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def get(self, name: str) -> Loss:
        key = str(name).lower()
        if key not in self._registry:
            available = ", ".join(self.names())
            raise ConfigurationError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[key]


REGISTRY = LossRegistry()
REGISTRY.register(MeanSquaredError())
# Alias for parity with the short names used in configs
REGISTRY.register(CrossEntropy(), "ce")

__all__ = ["CrossEntropy", "EPSILON", "Loss", "LossRegistry", "MeanSquaredError", "REGISTRY"]
