"""
Differentiable-value interface used by sparse layers.

A computation graph is a chain of nodes, each exposing its current output
and a way to push an upstream gradient back toward the variables it
depends on. Two flavours exist:

- Result: plain reverse-mode. ``propagate_gradient(upstream, g)`` adds the
  derivative of a scalar loss into the accumulation map ``g``.
- RResult: additionally carries a directional derivative (the R-operator)
  along a perturbation ``RVector``, and ``propagate_r_gradient`` fills both
  the ordinary gradient map and the R-gradient map in lockstep.

Nodes are matched structurally (typing.Protocol), so a layer result, an
activation written by a caller, or a leaf variable all plug in without
sharing a base class.

Gradient maps are plain dicts keyed by Variable. A variable is tracked iff
it is a key; untracked variables are treated as constants.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

import numpy as np


class Variable:
    """
    A named, owned parameter vector.

    Optimizers mutate ``vector`` in place between evaluations. Variables
    hash by identity so they can key gradient maps.

    Attributes:
        vector: Float64 parameter values
        name: Optional label used in reprs and error messages
    """

    def __init__(self, vector, name: str = ""):
        self.vector = np.array(vector, dtype=np.float64)
        self.name = name

    def __len__(self) -> int:
        return len(self.vector)

    def output(self) -> np.ndarray:
        return self.vector

    def constant(self, g: "Gradient") -> bool:
        return self not in g

    def propagate_gradient(self, upstream: np.ndarray, g: "Gradient") -> None:
        grad = g.get(self)
        if grad is not None:
            grad += upstream

    def __repr__(self) -> str:
        label = f"{self.name!r}, " if self.name else ""
        return f"Variable({label}size={len(self.vector)})"


Gradient = Dict[Variable, np.ndarray]
RGradient = Dict[Variable, np.ndarray]
RVector = Dict[Variable, np.ndarray]


@runtime_checkable
class Result(Protocol):
    """A node in a reverse-mode computation graph."""

    def output(self) -> np.ndarray: ...

    def constant(self, g: Gradient) -> bool: ...

    def propagate_gradient(self, upstream: np.ndarray, g: Gradient) -> None: ...


@runtime_checkable
class RResult(Protocol):
    """A node that also carries a directional derivative."""

    def output(self) -> np.ndarray: ...

    def r_output(self) -> np.ndarray: ...

    def constant(self, rg: RGradient, g: Optional[Gradient]) -> bool: ...

    def propagate_r_gradient(
        self,
        upstream: np.ndarray,
        upstream_r: np.ndarray,
        rg: RGradient,
        g: Optional[Gradient],
    ) -> None: ...


class RVariable:
    """
    Leaf RResult wrapping a Variable and its perturbation direction.

    A variable missing from the RVector has a zero direction.
    """

    def __init__(self, variable: Variable, rv: RVector):
        self.variable = variable
        direction = rv.get(variable)
        if direction is None:
            self._r_vector = np.zeros_like(variable.vector)
        else:
            self._r_vector = np.asarray(direction, dtype=np.float64)

    def output(self) -> np.ndarray:
        return self.variable.vector

    def r_output(self) -> np.ndarray:
        return self._r_vector

    def constant(self, rg: RGradient, g: Optional[Gradient]) -> bool:
        if self.variable in rg:
            return False
        return g is None or self.variable not in g

    def propagate_r_gradient(
        self,
        upstream: np.ndarray,
        upstream_r: np.ndarray,
        rg: RGradient,
        g: Optional[Gradient],
    ) -> None:
        if g is not None and self.variable in g:
            g[self.variable] += upstream
        if self.variable in rg:
            rg[self.variable] += upstream_r


def zero_gradient(variables: Iterable[Variable]) -> Gradient:
    """Create a gradient map tracking ``variables``, all zeros."""
    return {v: np.zeros_like(v.vector) for v in variables}


def zero_r_gradient(variables: Iterable[Variable]) -> RGradient:
    """Create an R-gradient map tracking ``variables``, all zeros."""
    return {v: np.zeros_like(v.vector) for v in variables}


__all__ = [
    "Variable",
    "RVariable",
    "Result",
    "RResult",
    "Gradient",
    "RGradient",
    "RVector",
    "zero_gradient",
    "zero_r_gradient",
]
