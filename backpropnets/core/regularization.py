"""Weight penalties added to the training loss.

A regularizer contributes ``penalty(weights)`` to the reported loss and
``gradient(W)`` to the loss gradient of every weight matrix, bias rows
included. ``lam`` is the penalty strength.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Sequence

import numpy as np

from .errors import ConfigurationError
from .types import Array


@dataclass
class Regularizer:
    lam: float = 0.01
    name = "regularizer"

    def penalty(self, weights: Sequence[Array]) -> float:
        return float(sum(self._penalty(np.asarray(w, dtype=float)) for w in weights))

    def gradient(self, weights: Array) -> Array:
        raise NotImplementedError

    def _penalty(self, weights: Array) -> float:
        raise NotImplementedError

    def options(self) -> Dict[str, float]:
        return {"lam": self.lam}


@dataclass
class L1(Regularizer):
    """``lam * sum(|w|)``; the gradient is ``lam * sign(w)`` (zero at zero)."""

    name = "l1"

    def _penalty(self, weights: Array) -> float:
        return self.lam * float(np.sum(np.abs(weights)))

    def gradient(self, weights: Array) -> Array:
        return self.lam * np.sign(weights)


@dataclass
class L2(Regularizer):
    """``lam / 2 * sum(w**2)``, i.e. weight decay."""

    name = "l2"

    def _penalty(self, weights: Array) -> float:
        return 0.5 * self.lam * float(np.sum(weights**2))

    def gradient(self, weights: Array) -> Array:
        return self.lam * weights


@dataclass
class ElasticNet(Regularizer):
    """Mix of L1 (weight ``l1_ratio``) and L2 (weight ``1 - l1_ratio``)."""

    l1_ratio: float = 0.5
    name = "elastic_net"

    def __post_init__(self) -> None:
        if not 0.0 <= self.l1_ratio <= 1.0:
            raise ConfigurationError(f"l1_ratio must be within [0, 1], got {self.l1_ratio}")

    def _penalty(self, weights: Array) -> float:
        l1 = self.l1_ratio * float(np.sum(np.abs(weights)))
        l2 = (1.0 - self.l1_ratio) * 0.5 * float(np.sum(weights**2))
        return self.lam * (l1 + l2)

    def gradient(self, weights: Array) -> Array:
        return self.lam * (self.l1_ratio * np.sign(weights) + (1.0 - self.l1_ratio) * weights)

    def options(self) -> Dict[str, float]:
        return {"lam": self.lam, "l1_ratio": self.l1_ratio}


_REGULARIZERS: Dict[str, Callable[..., Regularizer]] = {
    "l1": L1,
    "l2": L2,
    "elastic_net": ElasticNet,
}


def names() -> Iterable[str]:
    return sorted(_REGULARIZERS)


def create(name: str, **options: float) -> Regularizer:
    key = str(name).lower()
    if key not in _REGULARIZERS:
        available = ", ".join(names())
        raise ConfigurationError(
            f"Unknown regularization {name!r}. Available regularizations: {available}"
        )
    try:
        return _REGULARIZERS[key](**options)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid options for regularization {name!r}: {options}") from exc


def resolve(spec: Any) -> Regularizer | None:
    """Accept ``None``, a symbol, a mapping with ``name`` or an instance."""

    if spec is None or isinstance(spec, Regularizer):
        return spec
    if isinstance(spec, str):
        return create(spec)
    if isinstance(spec, Mapping):
        options = dict(spec)
        name = options.pop("name", None)
        if name is None:
            raise ConfigurationError("Regularization mapping needs a 'name' entry")
        return create(name, **options)
    raise ConfigurationError(f"Cannot build a regularization from {spec!r}")


__all__ = ["ElasticNet", "L1", "L2", "Regularizer", "create", "names", "resolve"]
