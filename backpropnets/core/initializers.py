"""Weight initialisation strategies.

An initializer is called as ``init(layer, i, j)`` and returns the starting
weight of the connection from neuron ``i`` of layer ``layer`` to neuron ``j``
of layer ``layer + 1``. ``matrix`` draws a whole layer at once.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Tuple

import numpy as np

from .errors import ConfigurationError
from .types import Architecture, Array

InitFn = Callable[[int, int, int], float]


@dataclass
class UniformInitializer:
    """Draws from ``[-limit, limit)`` where ``limit`` may depend on the layer."""

    architecture: Architecture
    rng: np.random.Generator
    name: str = "uniform"

    def limit(self, layer: int) -> float:
        return 1.0

    def __call__(self, layer: int, i: int, j: int) -> float:
        limit = self.limit(layer)
        return float(self.rng.random() * 2.0 * limit - limit)

    def matrix(self, layer: int, shape: Tuple[int, int]) -> Array:
        limit = self.limit(layer)
        return self.rng.random(shape) * 2.0 * limit - limit


@dataclass
class XavierInitializer(UniformInitializer):
    name: str = "xavier"

    def limit(self, layer: int) -> float:
        fan_in = self.architecture[layer]
        fan_out = self.architecture[layer + 1]
        return math.sqrt(6.0 / (fan_in + fan_out))


@dataclass
class HeInitializer(UniformInitializer):
    name: str = "he"

    def limit(self, layer: int) -> float:
        return math.sqrt(6.0 / self.architecture[layer])


@dataclass
class CustomInitializer:
    """Wraps a caller function ``fn(layer, i, j)``; it is not serialized."""

    fn: InitFn
    name: str = "custom"

    def __call__(self, layer: int, i: int, j: int) -> float:
        return float(self.fn(layer, i, j))

    def matrix(self, layer: int, shape: Tuple[int, int]) -> Array:
        rows, cols = shape
        out = np.empty(shape, dtype=float)
        for i in range(rows):
            for j in range(cols):
                out[i, j] = self(layer, i, j)
        return out


_STRATEGIES: Dict[str, type] = {
    "uniform": UniformInitializer,
    "xavier": XavierInitializer,
    "glorot": XavierInitializer,
    "he": HeInitializer,
}


def names() -> Iterable[str]:
    return sorted(_STRATEGIES)


def make_initializer(spec: object, architecture: Architecture, rng: np.random.Generator):
    """Build an initializer from a symbol or a ``f(layer, i, j)`` callable."""

    if isinstance(spec, (UniformInitializer, CustomInitializer)):
        return spec
    if isinstance(spec, str):
        key = spec.lower()
        if key not in _STRATEGIES:
            available = ", ".join(names())
            raise ConfigurationError(
                f"Unknown weight initialization {spec!r}. Available strategies: {available}"
            )
        return _STRATEGIES[key](architecture=architecture, rng=rng)
    if callable(spec):
        return CustomInitializer(spec)
    raise ConfigurationError(f"Cannot build a weight initializer from {spec!r}")


__all__ = [
    "CustomInitializer",
    "HeInitializer",
    "UniformInitializer",
    "XavierInitializer",
    "make_initializer",
    "names",
]
