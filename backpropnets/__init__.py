"""backpropnets public API."""

from .core import activations, initializers, optimizers, types  # noqa: F401
from .core.errors import ConfigurationError, DimensionError
from .core.network import Network
from .core.optimizers import LearningRateScheduler
from .serialization import load, save
from .training.losses import REGISTRY as losses
from .training.trainer import Trainer

__all__ = [
    "ConfigurationError",
    "DimensionError",
    "LearningRateScheduler",
    "Network",
    "Trainer",
    "activations",
    "initializers",
    "load",
    "losses",
    "optimizers",
    "save",
    "types",
]
