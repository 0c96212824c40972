#!/usr/bin/env python3
"""
Demo: Receptive Fields of a Spatial Sparse Layer

Builds a first layer of input neurons scattered in the unit cube, then a
spatial layer on top of it, and plots which input neurons a few output
neurons connect to (projected onto the x-y plane).

Small spreads give tight, local receptive fields; large spreads give
connections that look almost uniformly random.

Usage:
    python examples/visualize_connections.py 400 30 0.2 fields.png
    python examples/visualize_connections.py 400 30 0.2 fields.png --policy softmax_weighted
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

import argparse
import logging
import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from sparsenet import ChooserPolicy, Layer, coords_to_array, setup_logging

logger = logging.getLogger("sparsenet.examples.visualize")


def plot_receptive_fields(
    input_layer: Layer,
    layer: Layer,
    neurons: list[int],
    title: str,
) -> plt.Figure:
    """
    Plot the chosen inputs of each listed output neuron.

    Args:
        input_layer: Layer whose coordinates are the candidate inputs
        layer: Spatial layer built on top of input_layer
        neurons: Output neurons to draw
        title: Figure title

    Returns:
        matplotlib Figure
    """
    in_points = coords_to_array(input_layer.coords)
    out_points = coords_to_array(layer.coords)

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(in_points[:, 0], in_points[:, 1], s=6, c='lightgray', label='input neurons')

    colors = plt.cm.tab10(np.linspace(0, 1, 10))
    for i, o in enumerate(neurons):
        color = colors[i % len(colors)]
        chosen = in_points[layer.indices[o]]
        ax.scatter(chosen[:, 0], chosen[:, 1], s=18, color=color, label=f'inputs of neuron {o}')
        ax.scatter(
            out_points[o, 0], out_points[o, 1],
            s=120, marker='*', color=color, edgecolors='black',
        )

    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_aspect('equal')
    ax.set_xlabel('x')
    ax.set_ylabel('y')
    ax.set_title(title)
    ax.legend(loc='upper right', fontsize=7)
    return fig


def main():
    parser = argparse.ArgumentParser(description="Plot receptive fields of a spatial sparse layer")
    parser.add_argument("num_in", type=int, help="number of input neurons")
    parser.add_argument("num_weights", type=int, help="connections per output neuron")
    parser.add_argument("spread", type=float, help="spatial spread")
    parser.add_argument("output", type=Path, help="output PNG path")
    parser.add_argument("--neurons", type=int, default=3, help="output neurons to draw")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in ChooserPolicy if p is not ChooserPolicy.UNIFORM],
        default=ChooserPolicy.NOISY_RANK.value,
    )
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    setup_logging(logging.DEBUG)
    rng = np.random.default_rng(args.seed)

    # The layer needs at least num_weights output neurons.
    out_count = max(args.neurons, args.num_weights)

    input_layer = Layer.unbiased(1, args.num_in, 1, rng=rng)
    layer = Layer.from_layer(
        input_layer,
        out_count,
        args.num_weights,
        args.spread,
        rng=rng,
        policy=ChooserPolicy(args.policy),
    )

    title = f"{args.num_weights} of {args.num_in} inputs, spread={args.spread:g} ({args.policy})"
    fig = plot_receptive_fields(input_layer, layer, list(range(args.neurons)), title)
    fig.savefig(args.output, dpi=100, bbox_inches='tight')
    plt.close(fig)
    logger.info("Saved plot to %s", args.output)


if __name__ == "__main__":
    main()
