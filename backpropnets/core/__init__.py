"""Core numerical primitives for backpropnets."""

from . import activations, errors, initializers, optimizers, regularization, types
from . import network

__all__ = ["activations", "errors", "initializers", "network", "optimizers", "regularization", "types"]
