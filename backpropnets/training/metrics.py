"""Metric helpers for the training driver."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..core.types import Array


def is_correct(expected: Array, predicted: Array, *, threshold: float = 0.5) -> bool:
    """Return whether one prediction matches its target.

    Single-output networks are thresholded; multi-output networks compare the
    index of the most active neuron.
    """

    expected = np.asarray(expected, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if expected.size == 1:
        return bool((predicted[0] >= threshold) == (expected[0] >= threshold))
    return int(np.argmax(predicted)) == int(np.argmax(expected))


def accuracy(expected: Sequence[Array], predicted: Sequence[Array], *, threshold: float = 0.5) -> float:
    if len(expected) == 0:
        return 0.0
    hits = sum(is_correct(e, p, threshold=threshold) for e, p in zip(expected, predicted))
    return hits / len(expected)


__all__ = ["accuracy", "is_correct"]
