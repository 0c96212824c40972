"""Tests for the differentiable-value interface."""

from __future__ import annotations

import numpy as np

from sparsenet.autodiff import (
    RResult,
    RVariable,
    Result,
    Variable,
    zero_gradient,
    zero_r_gradient,
)


class TestVariable:
    """Tests for Variable leaves."""

    def test_stores_float_copy(self):
        """Vector is stored as an independent float64 copy."""
        source = [1, 2, 3]
        v = Variable(source)
        assert v.vector.dtype == np.float64
        np.testing.assert_array_equal(v.output(), [1.0, 2.0, 3.0])

    def test_is_result(self):
        """Variable satisfies the Result protocol."""
        assert isinstance(Variable([0.0]), Result)

    def test_hashes_by_identity(self):
        """Equal-valued variables are distinct gradient keys."""
        a = Variable([1.0])
        b = Variable([1.0])
        g = {a: np.zeros(1)}
        assert a in g
        assert b not in g

    def test_constant_when_untracked(self):
        """A variable missing from the map is constant."""
        v = Variable([1.0, 2.0])
        assert v.constant({})
        assert not v.constant(zero_gradient([v]))

    def test_propagate_accumulates(self):
        """Upstream is added into the tracked slot."""
        v = Variable([1.0, 2.0])
        g = zero_gradient([v])
        v.propagate_gradient(np.array([0.5, 1.0]), g)
        v.propagate_gradient(np.array([0.5, 1.0]), g)
        np.testing.assert_array_equal(g[v], [1.0, 2.0])

    def test_propagate_ignores_untracked(self):
        """Untracked variables leave the map unchanged."""
        v = Variable([1.0])
        g = {}
        v.propagate_gradient(np.array([3.0]), g)
        assert g == {}

    def test_repr(self):
        """Test string representation."""
        assert "weights" in repr(Variable([0.0, 1.0], name="weights"))


class TestRVariable:
    """Tests for RVariable leaves."""

    def test_outputs(self):
        """Output and r_output expose value and direction."""
        v = Variable([1.0, 2.0])
        rv = {v: np.array([0.1, -0.1])}
        r = RVariable(v, rv)

        assert isinstance(r, RResult)
        np.testing.assert_array_equal(r.output(), [1.0, 2.0])
        np.testing.assert_array_equal(r.r_output(), [0.1, -0.1])

    def test_missing_direction_is_zero(self):
        """A variable absent from rv has a zero direction."""
        v = Variable([1.0, 2.0])
        np.testing.assert_array_equal(RVariable(v, {}).r_output(), [0.0, 0.0])

    def test_output_is_live(self):
        """Output reflects in-place parameter updates."""
        v = Variable([1.0])
        r = RVariable(v, {})
        v.vector[0] = 5.0
        assert r.output()[0] == 5.0

    def test_constant(self):
        """Constant only when tracked in neither map."""
        v = Variable([1.0])
        r = RVariable(v, {})
        assert r.constant({}, None)
        assert r.constant({}, {})
        assert not r.constant(zero_r_gradient([v]), None)
        assert not r.constant({}, zero_gradient([v]))

    def test_propagate_fills_both_maps(self):
        """Gradient and R-gradient are filled together."""
        v = Variable([1.0, 2.0])
        r = RVariable(v, {})
        g = zero_gradient([v])
        rg = zero_r_gradient([v])

        r.propagate_r_gradient(np.array([1.0, 2.0]), np.array([3.0, 4.0]), rg, g)

        np.testing.assert_array_equal(g[v], [1.0, 2.0])
        np.testing.assert_array_equal(rg[v], [3.0, 4.0])

    def test_propagate_without_gradient_map(self):
        """A missing gradient map is tolerated."""
        v = Variable([1.0])
        rg = zero_r_gradient([v])
        RVariable(v, {}).propagate_r_gradient(np.array([1.0]), np.array([2.0]), rg, None)
        np.testing.assert_array_equal(rg[v], [2.0])
