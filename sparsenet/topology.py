"""
Builders for stacks of sparse layers.

A deep sparse network is a chain of layers where the first one draws its
connections uniformly and every later one draws them spatially from its
predecessor's coordinates. These helpers build such chains from a compact
description and thread a single seeded random source through all of them,
so the same seed always reproduces the same topology.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from sparsenet.chooser import ChooserPolicy
from sparsenet.layer import Layer

logger = logging.getLogger(__name__)


@dataclass
class LayerSpec:
    """Specification for one sparse layer in a stack.

    Attributes:
        out_count: Number of output neurons
        conn_count: Connections per output neuron
        spread: Spatial spread (ignored for the first layer of a stack)
        policy: Spatial chooser policy (ignored for the first layer)
    """
    out_count: int
    conn_count: int
    spread: float = 1.0
    policy: ChooserPolicy = ChooserPolicy.NOISY_RANK


def build_layers(
    in_count: int,
    specs: Sequence[LayerSpec],
    seed: int = 42,
) -> list[Layer]:
    """
    Build a stack of sparse layers.

    The first spec becomes an unbiased layer over ``in_count`` raw inputs;
    each following spec becomes a spatial layer over the previous one.

    Args:
        in_count: Number of raw inputs
        specs: One LayerSpec per layer
        seed: Random seed for reproducibility (default 42)

    Returns:
        List of freshly initialized layers

    Raises:
        ValueError: If specs is empty
        ConnectionCountError: If any spec asks for too many connections

    Example:
        >>> layers = build_layers(784, [
        ...     LayerSpec(1000, 300),
        ...     LayerSpec(2000, 100, spread=1.0),
        ...     LayerSpec(500, 70, spread=0.5),
        ... ])
    """
    if len(specs) == 0:
        raise ValueError("at least one LayerSpec is required")

    rng = np.random.default_rng(seed)
    first = specs[0]
    layers = [Layer.unbiased(in_count, first.out_count, first.conn_count, rng=rng)]
    for spec in specs[1:]:
        layers.append(Layer.from_layer(
            layers[-1],
            spec.out_count,
            spec.conn_count,
            spec.spread,
            rng=rng,
            policy=spec.policy,
        ))

    logger.info(
        "Built %d sparse layers: %s",
        len(layers),
        " -> ".join([str(in_count)] + [str(l.out_count) for l in layers]),
    )
    return layers


def build_layers_from_topology(
    topology: Sequence[int],
    conn_counts: Sequence[int],
    spreads: Optional[Sequence[float]] = None,
    policy: ChooserPolicy = ChooserPolicy.NOISY_RANK,
    seed: int = 42,
) -> list[Layer]:
    """
    Build a stack of sparse layers from a list of widths.

    Args:
        topology: Layer widths including the input, e.g. [784, 1000, 500]
        conn_counts: Connections per neuron for each layer
            (len(topology) - 1 entries)
        spreads: Spread for each layer (default 1.0 everywhere). The first
            entry is ignored since the first layer is unbiased.
        policy: Spatial chooser policy for every spatial layer
        seed: Random seed for reproducibility (default 42)

    Returns:
        List of freshly initialized layers

    Raises:
        ValueError: If topology has fewer than 2 elements or the per-layer
            sequences have the wrong length
    """
    topology = list(topology)

    if len(topology) < 2:
        raise ValueError("topology must have at least 2 elements (input and output)")

    if any(d < 1 for d in topology):
        raise ValueError("all dimensions in topology must be at least 1")

    num_layers = len(topology) - 1
    if len(conn_counts) != num_layers:
        raise ValueError(f"expected {num_layers} conn_counts, got {len(conn_counts)}")

    if spreads is None:
        spreads = [1.0] * num_layers
    elif len(spreads) != num_layers:
        raise ValueError(f"expected {num_layers} spreads, got {len(spreads)}")

    specs = [
        LayerSpec(
            out_count=topology[i + 1],
            conn_count=conn_counts[i],
            spread=spreads[i],
            policy=policy,
        )
        for i in range(num_layers)
    ]
    return build_layers(topology[0], specs, seed=seed)


def forward_stack(
    layers: Sequence[Layer],
    x: np.ndarray,
    activation: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    return_intermediates: bool = False,
) -> np.ndarray | tuple[np.ndarray, list[np.ndarray]]:
    """
    Forward pass through a stack of layers.

    Args:
        layers: Layers in order
        x: Input of shape (in_count,) or (N, in_count)
        activation: Elementwise function applied after every layer, if any
        return_intermediates: If True, also return every layer's output

    Returns:
        Output array, or (output, [intermediate activations])
    """
    current = np.asarray(x, dtype=np.float64)
    intermediates = [current]

    for layer in layers:
        current = layer.forward(current)
        if activation is not None:
            current = activation(current)
        intermediates.append(current)

    if return_intermediates:
        return current, intermediates
    return current


__all__ = [
    "LayerSpec",
    "build_layers",
    "build_layers_from_topology",
    "forward_stack",
]
