"""
Exception types raised by sparsenet.

All of these signal caller or programmer contract violations. None of them
are transient: retrying the same call with the same arguments fails again.
"""

from __future__ import annotations


class SparseNetError(Exception):
    """Base class for sparsenet errors."""


class ConnectionCountError(SparseNetError, ValueError):
    """A layer was asked for more connections than it has neurons."""


class ChooserExhaustedError(SparseNetError, IndexError):
    """A chooser was drawn from after every index had been returned."""


class ShapeMismatchError(SparseNetError, ValueError):
    """A vector passed to a layer does not match the layer's dimensions."""


class GradientCheckError(SparseNetError, AssertionError):
    """An analytic derivative disagrees with its finite-difference estimate."""


__all__ = [
    "SparseNetError",
    "ConnectionCountError",
    "ChooserExhaustedError",
    "ShapeMismatchError",
    "GradientCheckError",
]
