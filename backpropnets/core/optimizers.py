"""Gradient update rules.

Optimizers take parameters and their loss gradients and return the updated
parameters. Stateful optimizers key their buffers by parameter group (``key``)
and hold arrays shaped like the group, so each flattened index keeps its own
state and groups updated in the same step never share buffers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Tuple

import numpy as np

from .errors import ConfigurationError
from .types import Array

DEFAULT_KEY = "params"


@dataclass
class Optimizer:
    """Base class; subclasses implement :meth:`_apply`."""

    learning_rate: float = 0.01
    iteration: int = field(default=0, init=False)
    name = "optimizer"

    def step(self) -> int:
        self.iteration += 1
        return self.iteration

    def update(self, parameters: Array, gradients: Array, *, key: str = DEFAULT_KEY) -> Array:
        """Run one logical step on a single parameter group."""

        params, grads = _as_pair(parameters, gradients)
        self.step()
        return self._apply(key, params, grads)

    def update_many(self, groups: Mapping[str, Tuple[Array, Array]]) -> Dict[str, Array]:
        """Run one logical step across several parameter groups."""

        pairs = {key: _as_pair(p, g) for key, (p, g) in groups.items()}
        self.step()
        return {key: self._apply(key, p, g) for key, (p, g) in pairs.items()}

    def reset(self) -> None:
        self.iteration = 0

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        raise NotImplementedError

    def options(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate}

    @staticmethod
    def _slot(store: Dict[str, Array], key: str, like: Array) -> Array:
        buf = store.get(key)
        if buf is None or buf.shape != like.shape:
            buf = np.zeros_like(like, dtype=float)
            store[key] = buf
        return buf


def _as_pair(parameters: Array, gradients: Array) -> Tuple[Array, Array]:
    params = np.asarray(parameters, dtype=float)
    grads = np.asarray(gradients, dtype=float)
    if params.shape != grads.shape:
        raise ConfigurationError(
            f"Parameter shape {params.shape} does not match gradient shape {grads.shape}"
        )
    return params, grads


@dataclass
class GradientDescent(Optimizer):
    name = "gd"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        return params - self.learning_rate * grads


@dataclass
class Momentum(Optimizer):
    momentum: float = 0.9
    velocity: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)
    name = "momentum"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        v = self._slot(self.velocity, key, params)
        v *= self.momentum
        v -= self.learning_rate * grads
        return params + v

    def reset(self) -> None:
        super().reset()
        self.velocity.clear()

    def options(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate, "momentum": self.momentum}


@dataclass
class Nesterov(Momentum):
    """Momentum with a look-ahead correction applied to the returned parameters."""

    name = "nesterov"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        v = self._slot(self.velocity, key, params)
        v *= self.momentum
        v -= self.learning_rate * grads
        return params + self.momentum * v - self.learning_rate * grads

    def lookahead(self, parameters: Array, *, key: str = DEFAULT_KEY) -> Array:
        params = np.asarray(parameters, dtype=float)
        v = self.velocity.get(key)
        if v is None or v.shape != params.shape:
            return params.copy()
        return params + self.momentum * v


@dataclass
class AdaGrad(Optimizer):
    epsilon: float = 1e-8
    accumulator: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)
    name = "adagrad"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        acc = self._slot(self.accumulator, key, params)
        acc += grads**2
        return params - self.learning_rate * grads / (np.sqrt(acc) + self.epsilon)

    def reset(self) -> None:
        super().reset()
        self.accumulator.clear()

    def options(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate, "epsilon": self.epsilon}


@dataclass
class RMSProp(Optimizer):
    learning_rate: float = 0.001
    rho: float = 0.9
    epsilon: float = 1e-8
    squared: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)
    name = "rmsprop"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        sq = self._slot(self.squared, key, params)
        sq *= self.rho
        sq += (1.0 - self.rho) * grads**2
        return params - self.learning_rate * grads / (np.sqrt(sq) + self.epsilon)

    def reset(self) -> None:
        super().reset()
        self.squared.clear()

    def options(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate, "rho": self.rho, "epsilon": self.epsilon}


@dataclass
class Adam(Optimizer):
    learning_rate: float = 0.001
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8
    m: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)
    v: Dict[str, Array] = field(default_factory=dict, init=False, repr=False)
    name = "adam"

    def _apply(self, key: str, params: Array, grads: Array) -> Array:
        m = self._slot(self.m, key, params)
        v = self._slot(self.v, key, params)
        m *= self.beta1
        m += (1.0 - self.beta1) * grads
        v *= self.beta2
        v += (1.0 - self.beta2) * grads**2
        t = max(self.iteration, 1)
        m_hat = m / (1.0 - self.beta1**t)
        v_hat = v / (1.0 - self.beta2**t)
        return params - self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)

    def reset(self) -> None:
        super().reset()
        self.m.clear()
        self.v.clear()

    def options(self) -> Dict[str, float]:
        return {
            "learning_rate": self.learning_rate,
            "beta1": self.beta1,
            "beta2": self.beta2,
            "epsilon": self.epsilon,
        }


_OPTIMIZERS: Dict[str, Callable[..., Optimizer]] = {
    "gd": GradientDescent,
    "sgd": GradientDescent,
    "momentum": Momentum,
    "nesterov": Nesterov,
    "adagrad": AdaGrad,
    "rmsprop": RMSProp,
    "adam": Adam,
}


def names() -> Iterable[str]:
    return sorted(_OPTIMIZERS)


def create(name: str, **options: float) -> Optimizer:
    """Instantiate the optimizer registered under ``name``."""

    key = str(name).lower()
    if key not in _OPTIMIZERS:
        available = ", ".join(names())
        raise ConfigurationError(f"Unknown optimizer {name!r}. Available optimizers: {available}")
    try:
        return _OPTIMIZERS[key](**options)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid options for optimizer {name!r}: {options}") from exc


# Learning-rate schedules ----------------------------------------------------


@dataclass
class LearningRateScheduler:
    """Rewrites an optimizer's learning rate once per epoch.

    ``schedule`` is one of ``step``, ``exponential`` or ``cosine``.
    """

    optimizer: object
    schedule: str = "step"
    drop_rate: float = 0.5
    epochs_drop: int = 10
    decay_rate: float = 0.95
    t_max: int = 50
    epoch: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.schedule not in {"step", "exponential", "cosine"}:
            raise ConfigurationError(f"Unknown learning rate schedule: {self.schedule}")
        self.initial_lr = float(self.optimizer.learning_rate)

    def rate_at(self, epoch: int) -> float:
        if self.schedule == "step":
            return self.initial_lr * self.drop_rate ** (epoch // self.epochs_drop)
        if self.schedule == "exponential":
            return self.initial_lr * self.decay_rate**epoch
        return self.initial_lr * 0.5 * (1.0 + math.cos(math.pi * epoch / self.t_max))

    def step(self) -> float:
        self.epoch += 1
        rate = self.rate_at(self.epoch)
        self.optimizer.learning_rate = rate
        return rate

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.step()


__all__ = [
    "AdaGrad",
    "Adam",
    "GradientDescent",
    "LearningRateScheduler",
    "Momentum",
    "Nesterov",
    "Optimizer",
    "RMSProp",
    "create",
    "names",
]
