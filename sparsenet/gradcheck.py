"""
Finite-difference verification of Result and RResult implementations.

FuncChecker compares every analytic derivative a differentiable function
exposes against central differences of its forward pass:

- check_jacobian: propagate_gradient vs. d output / d variable
- check_r_output: r_output() vs. the directional derivative along rv
- check_r_gradient: the R-gradient map from propagate_r_gradient vs. the
  directional derivative of the gradient along rv (plus the ordinary
  gradient map filled by the same call)

Variables are perturbed in place and restored afterwards, which also
exercises the requirement that layers read their parameters live.

Example:
    >>> layer = Layer.unbiased(3, 4, 2, rng=0)
    >>> x = Variable([0.5, -0.3, 0.9])
    >>> checker = FuncChecker(layer.apply, [x] + layer.parameters(), x,
    ...                       f_r=layer.apply_r, rv=rv)
    >>> checker.full_check()
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np

from sparsenet.autodiff import (
    RResult,
    RVariable,
    RVector,
    Result,
    Variable,
    zero_gradient,
    zero_r_gradient,
)
from sparsenet.errors import GradientCheckError


class FuncChecker:
    """
    Numeric checker for a differentiable function of some Variables.

    Args:
        f: Maps the input Variable (as a Result) to a Result
        variables: Variables to check derivatives for; may include the input
        inp: Input Variable passed to f
        f_r: Maps (rv, RResult) to an RResult; needed for R checks
        rv: Perturbation direction; variables absent from it use zeros
        epsilon: Finite-difference step
        rtol: Relative tolerance
        atol: Absolute tolerance
    """

    def __init__(
        self,
        f: Callable[[Result], Result],
        variables: Sequence[Variable],
        inp: Variable,
        f_r: Optional[Callable[[RVector, RResult], RResult]] = None,
        rv: Optional[RVector] = None,
        epsilon: float = 1e-6,
        rtol: float = 1e-4,
        atol: float = 1e-6,
    ):
        self.f = f
        self.f_r = f_r
        self.variables = list(variables)
        self.input = inp
        self.rv = rv if rv is not None else {}
        self.epsilon = epsilon
        self.rtol = rtol
        self.atol = atol

    # -- helpers ------------------------------------------------------------

    def _compare(self, label: str, actual: np.ndarray, expected: np.ndarray) -> None:
        actual = np.asarray(actual)
        expected = np.asarray(expected)
        if actual.shape != expected.shape:
            raise GradientCheckError(
                f"{label}: shape {actual.shape} != expected {expected.shape}"
            )
        if not np.allclose(actual, expected, rtol=self.rtol, atol=self.atol):
            err = float(np.max(np.abs(actual - expected)))
            raise GradientCheckError(f"{label}: max abs error {err:.3e}")

    def _evaluate(self) -> np.ndarray:
        return np.array(self.f(self.input).output(), dtype=np.float64)

    def _direction(self, var: Variable) -> np.ndarray:
        direction = self.rv.get(var)
        if direction is None:
            return np.zeros_like(var.vector)
        return np.asarray(direction, dtype=np.float64)

    def _shifted(self, scale: float, fn: Callable[[], np.ndarray]) -> np.ndarray:
        """Evaluate fn with every variable moved by scale * rv."""
        saved = [v.vector.copy() for v in self.variables]
        try:
            for v in self.variables:
                v.vector += scale * self._direction(v)
            return fn()
        finally:
            for v, old in zip(self.variables, saved):
                v.vector[:] = old

    def _gradients(self) -> list[list[np.ndarray]]:
        """Analytic gradient of every output component, per variable."""
        result = self.f(self.input)
        out_len = len(result.output())
        rows = []
        for j in range(out_len):
            g = zero_gradient(self.variables)
            upstream = np.zeros(out_len)
            upstream[j] = 1.0
            result.propagate_gradient(upstream, g)
            rows.append([g[v].copy() for v in self.variables])
        return rows

    def _flat_gradients(self) -> np.ndarray:
        rows = self._gradients()
        return np.array([np.concatenate(row) for row in rows])

    # -- checks -------------------------------------------------------------

    def check_jacobian(self) -> None:
        """Compare reverse-mode gradients with central differences."""
        analytic = self._gradients()
        eps = self.epsilon

        for vi, var in enumerate(self.variables):
            for i in range(len(var.vector)):
                original = var.vector[i]
                try:
                    var.vector[i] = original + eps
                    plus = self._evaluate()
                    var.vector[i] = original - eps
                    minus = self._evaluate()
                finally:
                    var.vector[i] = original

                numeric = (plus - minus) / (2 * eps)
                expected = np.array([row[vi][i] for row in analytic])
                self._compare(f"jacobian[{var!r}][{i}]", expected, numeric)

    def check_r_output(self) -> None:
        """Compare r_output() with the numeric directional derivative."""
        if self.f_r is None:
            raise ValueError("f_r is required for R checks")

        rresult = self.f_r(self.rv, RVariable(self.input, self.rv))
        self._compare("output", rresult.output(), self._evaluate())

        eps = self.epsilon
        plus = self._shifted(eps, self._evaluate)
        minus = self._shifted(-eps, self._evaluate)
        self._compare("r_output", rresult.r_output(), (plus - minus) / (2 * eps))

    def check_r_gradient(self) -> None:
        """Compare R-gradients with numeric derivatives of the gradient."""
        if self.f_r is None:
            raise ValueError("f_r is required for R checks")

        rresult = self.f_r(self.rv, RVariable(self.input, self.rv))
        out_len = len(rresult.output())

        eps = self.epsilon
        plain = self._flat_gradients()
        plus = self._shifted(eps, self._flat_gradients)
        minus = self._shifted(-eps, self._flat_gradients)
        numeric_r = (plus - minus) / (2 * eps)

        for j in range(out_len):
            g = zero_gradient(self.variables)
            rg = zero_r_gradient(self.variables)
            upstream = np.zeros(out_len)
            upstream[j] = 1.0
            rresult.propagate_r_gradient(upstream, np.zeros(out_len), rg, g)

            self._compare(
                f"r-pass gradient[{j}]",
                np.concatenate([g[v] for v in self.variables]),
                plain[j],
            )
            self._compare(
                f"r-gradient[{j}]",
                np.concatenate([rg[v] for v in self.variables]),
                numeric_r[j],
            )

    def full_check(self) -> None:
        """Run every check that the configured callables allow."""
        self.check_jacobian()
        if self.f_r is not None:
            self.check_r_output()
            self.check_r_gradient()


__all__ = ["FuncChecker"]
