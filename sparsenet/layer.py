"""
Sparsely-connected layers arranged in 3-space.

Each output neuron of a Layer has a position in the unit cube and reads
from a fixed number of input neurons. The first layer of a network picks
its inputs uniformly at random; every later layer picks them with a
spatial Chooser, so output neurons tend to connect to input neurons that
sit nearby.

Parameter layout:
    weights  flat vector of out_count * conn_count values, all weights of
             output neuron o contiguous at [o * conn_count, (o+1) * conn_count)
             in the same order as indices[o]
    biases   one value per output neuron

The evaluator reads both vectors live on every call, so values written by
an optimizer between calls are always the ones used.

Passes:
- forward(x): dense evaluation for a vector or a batch
- apply(result): reverse-mode node (LayerResult)
- apply_r(rv, rresult): forward-mode node carrying the R-operator
  (LayerRResult), whose reverse pass fills gradient and R-gradient maps

Usage:
    from sparsenet import Layer

    first = Layer.unbiased(in_count=784, out_count=1000, conn_count=300, rng=0)
    second = Layer.from_layer(first, out_count=2000, conn_count=100, spread=1.0, rng=1)
    y = second.forward(np.tanh(first.forward(x)))
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

import numpy as np

from sparsenet.autodiff import (
    Gradient,
    RGradient,
    RResult,
    RVariable,
    RVector,
    Result,
    Variable,
)
from sparsenet.chooser import ChooserPolicy, new_spatial, new_uniform
from sparsenet.coords import Coordinate, random_coordinates
from sparsenet.errors import ConnectionCountError, ShapeMismatchError

logger = logging.getLogger(__name__)

RandomLike = Union[np.random.Generator, int, None]


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------
#
# All kernels take ``indices`` of shape (out_count, conn_count) and flat
# weights. Inputs may carry leading batch dimensions.


def _accumulate(terms: np.ndarray) -> np.ndarray:
    """Sum over the last axis strictly left to right, in index-list order."""
    total = np.zeros(terms.shape[:-1])
    for k in range(terms.shape[-1]):
        total += terms[..., k]
    return total


def sparse_forward(
    indices: np.ndarray,
    weights: np.ndarray,
    biases: np.ndarray,
    x: np.ndarray,
) -> np.ndarray:
    """output[o] = biases[o] + sum_k weights[o, k] * x[indices[o, k]]"""
    w = weights.reshape(indices.shape)
    return _accumulate(x[..., indices] * w) + biases


def sparse_forward_r(
    indices: np.ndarray,
    weights: np.ndarray,
    weights_r: np.ndarray,
    biases_r: np.ndarray,
    x: np.ndarray,
    x_r: np.ndarray,
) -> np.ndarray:
    """Directional derivative of sparse_forward along (weights_r, biases_r, x_r)."""
    w = weights.reshape(indices.shape)
    w_r = weights_r.reshape(indices.shape)
    return _accumulate(w_r * x[..., indices] + w * x_r[..., indices]) + biases_r


def sparse_weight_gradient(
    indices: np.ndarray,
    x: np.ndarray,
    upstream: np.ndarray,
) -> np.ndarray:
    """Flat weight gradient, summed over any batch dimensions."""
    contrib = x[..., indices] * upstream[..., :, None]
    return contrib.reshape(-1, indices.size).sum(axis=0)


def sparse_input_gradient(
    indices: np.ndarray,
    weights: np.ndarray,
    upstream: np.ndarray,
    in_count: int,
) -> np.ndarray:
    """Scatter weights[o, k] * upstream[o] into position indices[o, k]."""
    contrib = weights.reshape(indices.shape) * upstream[..., :, None]
    batch_shape = upstream.shape[:-1]
    flat = contrib.reshape(-1, indices.size)

    downstream = np.zeros((flat.shape[0], in_count))
    np.add.at(downstream, (slice(None), indices.ravel()), flat)
    return downstream.reshape(batch_shape + (in_count,))


def sparse_backward(
    indices: np.ndarray,
    weights: np.ndarray,
    x: np.ndarray,
    upstream: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Full reverse pass for a (possibly batched) input.

    Returns:
        (weight_grad, bias_grad, input_grad)
    """
    in_count = x.shape[-1]
    weight_grad = sparse_weight_gradient(indices, x, upstream)
    bias_grad = upstream.reshape(-1, indices.shape[0]).sum(axis=0)
    input_grad = sparse_input_gradient(indices, weights, upstream, in_count)
    return weight_grad, bias_grad, input_grad


# ---------------------------------------------------------------------------
# Layer
# ---------------------------------------------------------------------------


def _check_counts(in_count: int, out_count: int, conn_count: int) -> None:
    if in_count < 1 or out_count < 1 or conn_count < 1:
        raise ValueError("neuron and connection counts must be at least 1")
    if conn_count > in_count:
        raise ConnectionCountError(
            f"conn_count {conn_count} exceeds input neuron count {in_count}"
        )
    if conn_count > out_count:
        raise ConnectionCountError(
            f"conn_count {conn_count} exceeds output neuron count {out_count}"
        )


def _random_parameters(
    out_count: int,
    conn_count: int,
    rng: np.random.Generator,
) -> tuple[Variable, Variable, list[Coordinate]]:
    # Fan-in scaling keeps activation magnitudes independent of conn_count.
    weight_std = 1.0 / np.sqrt(conn_count)
    weights = Variable(rng.normal(0.0, weight_std, size=out_count * conn_count), name="weights")
    biases = Variable(rng.normal(0.0, 1.0, size=out_count), name="biases")
    coords = random_coordinates(out_count, rng)
    return weights, biases, coords


class Layer:
    """
    A sparsely-connected layer arranged in 3-space.

    Topology (coords, indices) is fixed at construction; only the contents
    of ``weights`` and ``biases`` change afterwards.

    Attributes:
        coords: Coordinate of each output neuron
        indices: Input indices per output neuron, shape (out_count, conn_count)
        weights: Flat Variable of out_count * conn_count weights
        biases: Variable of out_count biases
        in_count: Number of input neurons
    """

    def __init__(
        self,
        coords: Sequence[Coordinate],
        indices,
        weights: Variable,
        biases: Variable,
        in_count: int,
    ):
        """
        Assemble a layer from an existing topology and parameters.

        Use Layer.unbiased() or Layer.from_layer() to build a fresh one.

        Raises:
            ValueError: If the pieces disagree on dimensions or an index is
                out of range or repeated within a neuron
        """
        indices = np.asarray(indices, dtype=np.int64)
        if indices.ndim != 2:
            raise ValueError(f"indices must be 2-D, got shape {indices.shape}")
        out_count, conn_count = indices.shape

        if len(coords) != out_count:
            raise ValueError(f"Expected {out_count} coordinates, got {len(coords)}")
        if len(weights.vector) != out_count * conn_count:
            raise ValueError(
                f"Expected {out_count * conn_count} weights, got {len(weights.vector)}"
            )
        if len(biases.vector) != out_count:
            raise ValueError(f"Expected {out_count} biases, got {len(biases.vector)}")
        if indices.size and (indices.min() < 0 or indices.max() >= in_count):
            raise ValueError(f"indices must be in [0, {in_count})")
        for row in indices:
            if len(set(row.tolist())) != conn_count:
                raise ValueError("indices of one output neuron must be distinct")

        self.coords = list(coords)
        self.indices = indices
        self.weights = weights
        self.biases = biases
        self.in_count = int(in_count)

    # -- construction -------------------------------------------------------

    @classmethod
    def unbiased(
        cls,
        in_count: int,
        out_count: int,
        conn_count: int,
        rng: RandomLike = None,
    ) -> Layer:
        """
        Create a first-stage layer with uniformly random connections.

        Args:
            in_count: Number of raw inputs
            out_count: Number of output neurons
            conn_count: Connections per output neuron (fan-in)
            rng: Generator, seed, or None for a fresh Generator

        Returns:
            Newly initialized Layer

        Raises:
            ConnectionCountError: If conn_count exceeds in_count or out_count
        """
        _check_counts(in_count, out_count, conn_count)
        rng = np.random.default_rng(rng)

        weights, biases, coords = _random_parameters(out_count, conn_count, rng)
        indices = np.empty((out_count, conn_count), dtype=np.int64)
        for o in range(out_count):
            ch = new_uniform(in_count, rng)
            for k in range(conn_count):
                indices[o, k] = ch.choose()

        logger.debug(
            "Built unbiased layer %d -> %d with %d connections per neuron",
            in_count, out_count, conn_count,
        )
        return cls(coords, indices, weights, biases, in_count)

    @classmethod
    def from_layer(
        cls,
        input_layer: Layer,
        out_count: int,
        conn_count: int,
        spread: float,
        rng: RandomLike = None,
        policy: ChooserPolicy = ChooserPolicy.NOISY_RANK,
    ) -> Layer:
        """
        Create a layer whose connections favour nearby input neurons.

        Output coordinates are drawn fresh from the unit cube; each output
        neuron then draws its inputs from a spatial Chooser targeted at its
        own coordinate.

        Args:
            input_layer: Layer whose outputs feed this one
            out_count: Number of output neurons
            conn_count: Connections per output neuron (fan-in)
            spread: How spread out the connections are. Around 1 gives
                somewhat local connections, 5 gives nearly random ones.
            rng: Generator, seed, or None for a fresh Generator
            policy: Spatial chooser policy

        Returns:
            Newly initialized Layer

        Raises:
            ConnectionCountError: If conn_count exceeds the input layer's
                neuron count or out_count
        """
        in_count = input_layer.out_count
        _check_counts(in_count, out_count, conn_count)
        rng = np.random.default_rng(rng)

        weights, biases, coords = _random_parameters(out_count, conn_count, rng)
        indices = np.empty((out_count, conn_count), dtype=np.int64)
        for o, target in enumerate(coords):
            ch = new_spatial(input_layer.coords, target, spread, rng, policy=policy)
            for k in range(conn_count):
                indices[o, k] = ch.choose()

        logger.debug(
            "Built spatial layer %d -> %d with %d connections per neuron "
            "(spread=%g, policy=%s)",
            in_count, out_count, conn_count, spread, ChooserPolicy(policy).value,
        )
        return cls(coords, indices, weights, biases, in_count)

    # -- shape --------------------------------------------------------------

    @property
    def out_count(self) -> int:
        return self.indices.shape[0]

    @property
    def conn_count(self) -> int:
        return self.indices.shape[1]

    def parameters(self) -> list[Variable]:
        return [self.weights, self.biases]

    def _check_input(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if x.ndim == 0 or x.shape[-1] != self.in_count:
            raise ShapeMismatchError(
                f"Expected input of length {self.in_count}, got shape {x.shape}"
            )
        return x

    # -- evaluation ---------------------------------------------------------

    def forward(self, x: np.ndarray) -> np.ndarray:
        """
        Evaluate the layer.

        Args:
            x: Input of shape (in_count,) or (N, in_count)

        Returns:
            Output of shape (out_count,) or (N, out_count)

        Raises:
            ShapeMismatchError: If the last axis of x is not in_count
        """
        x = self._check_input(x)
        return sparse_forward(self.indices, self.weights.vector, self.biases.vector, x)

    def apply(self, inp: Result) -> LayerResult:
        """Apply the layer to a differentiable input."""
        x = self._check_input(inp.output())
        output = sparse_forward(self.indices, self.weights.vector, self.biases.vector, x)
        return LayerResult(self, output, inp)

    def apply_r(self, rv: RVector, inp: RResult) -> LayerRResult:
        """Like apply(), but also propagates the perturbation ``rv``."""
        x = self._check_input(inp.output())
        x_r = self._check_input(inp.r_output())

        r_weights = RVariable(self.weights, rv)
        r_biases = RVariable(self.biases, rv)

        output = sparse_forward(self.indices, r_weights.output(), r_biases.output(), x)
        output_r = sparse_forward_r(
            self.indices,
            r_weights.output(),
            r_weights.r_output(),
            r_biases.r_output(),
            x,
            x_r,
        )
        return LayerRResult(self, r_weights, r_biases, output, output_r, inp)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.forward(x)

    def __repr__(self) -> str:
        return (
            f"Layer(in={self.in_count}, out={self.out_count}, "
            f"conn={self.conn_count})"
        )


def new_unbiased(
    in_count: int,
    out_count: int,
    conn_count: int,
    rng: RandomLike = None,
) -> Layer:
    """Shorthand for Layer.unbiased()."""
    return Layer.unbiased(in_count, out_count, conn_count, rng=rng)


def new_from(
    input_layer: Layer,
    out_count: int,
    conn_count: int,
    spread: float,
    rng: RandomLike = None,
    policy: ChooserPolicy = ChooserPolicy.NOISY_RANK,
) -> Layer:
    """Shorthand for Layer.from_layer()."""
    return Layer.from_layer(input_layer, out_count, conn_count, spread, rng=rng, policy=policy)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def _check_upstream(layer: Layer, upstream: np.ndarray) -> np.ndarray:
    upstream = np.asarray(upstream, dtype=np.float64)
    if upstream.shape != (layer.out_count,):
        raise ShapeMismatchError(
            f"Expected upstream of length {layer.out_count}, got shape {upstream.shape}"
        )
    return upstream


class LayerResult:
    """Reverse-mode node produced by Layer.apply()."""

    def __init__(self, layer: Layer, output: np.ndarray, inp: Result):
        self.layer = layer
        self._output = output
        self.input = inp

    def output(self) -> np.ndarray:
        return self._output

    def constant(self, g: Gradient) -> bool:
        return (
            self.layer.weights.constant(g)
            and self.layer.biases.constant(g)
            and self.input.constant(g)
        )

    def propagate_gradient(self, upstream: np.ndarray, g: Gradient) -> None:
        layer = self.layer
        upstream = _check_upstream(layer, upstream)
        layer.biases.propagate_gradient(upstream, g)

        x = self.input.output()
        weight_grad = g.get(layer.weights)
        if weight_grad is not None:
            weight_grad += sparse_weight_gradient(layer.indices, x, upstream)

        if not self.input.constant(g):
            downstream = sparse_input_gradient(
                layer.indices, layer.weights.vector, upstream, len(x)
            )
            self.input.propagate_gradient(downstream, g)


class LayerRResult:
    """Forward-mode node produced by Layer.apply_r()."""

    def __init__(
        self,
        layer: Layer,
        r_weights: RVariable,
        r_biases: RVariable,
        output: np.ndarray,
        output_r: np.ndarray,
        inp: RResult,
    ):
        self.layer = layer
        self.r_weights = r_weights
        self.r_biases = r_biases
        self._output = output
        self._output_r = output_r
        self.input = inp

    def output(self) -> np.ndarray:
        return self._output

    def r_output(self) -> np.ndarray:
        return self._output_r

    def constant(self, rg: RGradient, g: Optional[Gradient]) -> bool:
        return (
            self.r_weights.constant(rg, g)
            and self.r_biases.constant(rg, g)
            and self.input.constant(rg, g)
        )

    def propagate_r_gradient(
        self,
        upstream: np.ndarray,
        upstream_r: np.ndarray,
        rg: RGradient,
        g: Optional[Gradient],
    ) -> None:
        layer = self.layer
        upstream = _check_upstream(layer, upstream)
        upstream_r = _check_upstream(layer, upstream_r)
        if g is None:
            g = {}

        self.r_biases.propagate_r_gradient(upstream, upstream_r, rg, g)

        x = self.input.output()
        x_r = self.input.r_output()
        weights = self.r_weights.output()
        weights_r = self.r_weights.r_output()

        weight_grad = g.get(layer.weights)
        if weight_grad is not None:
            weight_grad += sparse_weight_gradient(layer.indices, x, upstream)

        weight_rgrad = rg.get(layer.weights)
        if weight_rgrad is not None:
            weight_rgrad += sparse_weight_gradient(layer.indices, x, upstream_r)
            weight_rgrad += sparse_weight_gradient(layer.indices, x_r, upstream)

        if not self.input.constant(rg, g):
            in_count = len(x)
            downstream = sparse_input_gradient(layer.indices, weights, upstream, in_count)
            downstream_r = (
                sparse_input_gradient(layer.indices, weights_r, upstream, in_count)
                + sparse_input_gradient(layer.indices, weights, upstream_r, in_count)
            )
            self.input.propagate_r_gradient(downstream, downstream_r, rg, g)


__all__ = [
    "Layer",
    "LayerResult",
    "LayerRResult",
    "new_unbiased",
    "new_from",
    "sparse_forward",
    "sparse_forward_r",
    "sparse_backward",
    "sparse_weight_gradient",
    "sparse_input_gradient",
]
