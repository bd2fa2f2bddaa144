"""Exceptions raised by backpropnets."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid network or training configuration (raised at configuration time)."""


class DimensionError(ValueError):
    """Input or expected-output vector does not match the network layout."""

    def __init__(self, kind: str, expected: int, received: int) -> None:
        super().__init__(
            f"Wrong number of {kind}. Expected: {expected}, received: {received}."
        )
        self.kind = kind
        self.expected = expected
        self.received = received


__all__ = ["ConfigurationError", "DimensionError"]
