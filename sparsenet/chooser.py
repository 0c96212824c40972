"""
Biased sampling of input indices without replacement.

A Chooser hands out the indices ``0..n`` one at a time, each exactly once.
The order is random but can be biased toward inputs that sit close to a
target coordinate, which is how a sparse layer gives its output neurons
local receptive fields.

Policies:
- UNIFORM: a uniformly random permutation, no bias
- NOISY_RANK: sort once by ``distance + N(0, spread)`` and serve in order
- SOFTMAX_WEIGHTED: weighted sampling without replacement, with weights
  given by a temperature softmax over inverse distances

Usage:
    from sparsenet.chooser import new_uniform, new_spatial

    ch = new_spatial(input_coords, target, spread=1.0, rng=rng)
    first = ch.choose()
    second = ch.choose()
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional, Sequence

import numpy as np
from scipy.special import log_softmax, softmax

from sparsenet.coords import Coordinate, PointsLike, distances
from sparsenet.errors import ChooserExhaustedError


# Floor for distances before inversion so coincident points stay finite.
_MIN_DISTANCE = 1e-12

# A weighted pool is renormalized once its running total falls below this
# fraction of its last normalized total.
_RENORMALIZE_BELOW = 1e-6


class ChooserPolicy(str, Enum):
    """How a Chooser orders the indices it serves."""
    UNIFORM = "uniform"
    NOISY_RANK = "noisy_rank"
    SOFTMAX_WEIGHTED = "softmax_weighted"


class Chooser:
    """
    Stateful sampler over a pool of indices.

    Ordered policies (UNIFORM, NOISY_RANK) fix the whole draw order at
    construction time. SOFTMAX_WEIGHTED keeps per-index weights and a
    running total and draws from them on every call to choose().

    Attributes:
        policy: The ChooserPolicy this chooser was built with
    """

    def __init__(
        self,
        indices: Sequence[int],
        policy: ChooserPolicy = ChooserPolicy.UNIFORM,
        weights: Optional[Sequence[float]] = None,
        rng: Optional[np.random.Generator] = None,
        log_weights: Optional[Sequence[float]] = None,
    ):
        """
        Build a chooser over an explicit pool.

        Most callers want new_uniform() or new_spatial() instead.

        Args:
            indices: Pool of indices. For ordered policies this is the
                draw order.
            policy: Sampling policy
            weights: Non-negative per-index weights for SOFTMAX_WEIGHTED
            rng: Random source used for weighted draws
            log_weights: Per-index log-weights for SOFTMAX_WEIGHTED, as an
                alternative to ``weights``. Weights that would underflow
                keep their relative order after heavier indices are drawn.
        """
        self.policy = ChooserPolicy(policy)
        self._indices = [int(i) for i in indices]
        self._rng = rng if rng is not None else np.random.default_rng()
        self._log_weights = None

        if self.policy is ChooserPolicy.SOFTMAX_WEIGHTED:
            given = weights if log_weights is None else log_weights
            if given is None or len(given) != len(self._indices):
                raise ValueError("weighted chooser needs one weight per index")
            if log_weights is None:
                self._weights = [float(w) for w in weights]
            else:
                self._log_weights = [float(w) for w in log_weights]
            self._renormalize()
        else:
            # Served back to front so each draw is a cheap pop().
            self._indices.reverse()
            self._weights = None
            self._total = 0.0
            self._scale = 0.0

    def __len__(self) -> int:
        return len(self._indices)

    @property
    def remaining(self) -> tuple[int, ...]:
        """Indices not drawn yet. For ordered policies, in draw order."""
        if self._weights is None:
            return tuple(reversed(self._indices))
        return tuple(self._indices)

    @property
    def total_weight(self) -> float:
        return self._total

    def choose(self) -> int:
        """
        Draw one index and remove it from the pool.

        Returns:
            The chosen index

        Raises:
            ChooserExhaustedError: If every index has already been drawn
        """
        if not self._indices:
            raise ChooserExhaustedError("cannot choose from an exhausted chooser")

        if self._weights is None:
            return self._indices.pop()

        draw = self._rng.random() * self._total
        pos = len(self._weights) - 1
        for i, weight in enumerate(self._weights):
            draw -= weight
            if draw < 0:
                pos = i
                break

        self._total -= self._weights.pop(pos)
        if self._log_weights is not None:
            self._log_weights.pop(pos)
        if self._weights and self._total <= self._scale * _RENORMALIZE_BELOW:
            self._renormalize()
        return self._indices.pop(pos)

    def _renormalize(self) -> None:
        """Rebuild the weights and running total from the remaining pool."""
        if self._log_weights is not None:
            logs = np.asarray(self._log_weights, dtype=np.float64)
            self._weights = softmax(logs).tolist() if len(logs) else []
        self._total = math.fsum(self._weights)
        self._scale = self._total

    def __repr__(self) -> str:
        return f"Chooser({self.policy.value}, remaining={len(self)})"


def new_uniform(count: int, rng: Optional[np.random.Generator] = None) -> Chooser:
    """
    Create an unbiased chooser over ``0..count``.

    Every permutation of the draw order is equally likely.

    Args:
        count: Number of indices in the pool
        rng: Random source (default: a fresh unseeded Generator)

    Returns:
        Chooser with the UNIFORM policy
    """
    if count < 0:
        raise ValueError("count must be non-negative")
    rng = np.random.default_rng(rng)
    return Chooser(rng.permutation(count), ChooserPolicy.UNIFORM, rng=rng)


def new_spatial(
    input_coords: PointsLike,
    target: Coordinate,
    spread: float,
    rng: Optional[np.random.Generator] = None,
    policy: ChooserPolicy = ChooserPolicy.NOISY_RANK,
) -> Chooser:
    """
    Create a chooser biased toward inputs near ``target``.

    A small spread concentrates the early draws on the nearest neighbours;
    a large spread makes the order approach a uniform permutation.

    Args:
        input_coords: Coordinates of the candidate inputs
        target: Coordinate the draws are biased toward
        spread: Bias sharpness. Noise standard deviation for NOISY_RANK,
            softmax temperature for SOFTMAX_WEIGHTED.
        rng: Random source (default: a fresh unseeded Generator)
        policy: NOISY_RANK or SOFTMAX_WEIGHTED

    Returns:
        Chooser over ``0..len(input_coords)``

    Raises:
        ValueError: For an unsupported policy or an invalid spread
    """
    policy = ChooserPolicy(policy)
    rng = np.random.default_rng(rng)
    dists = distances(input_coords, target)

    if policy is ChooserPolicy.NOISY_RANK:
        if spread < 0:
            raise ValueError("spread must be non-negative")
        noisy = dists + rng.normal(0.0, spread, size=len(dists))
        order = np.argsort(noisy, kind="stable")
        return Chooser(order, policy, rng=rng)

    if policy is ChooserPolicy.SOFTMAX_WEIGHTED:
        if spread <= 0:
            raise ValueError("spread must be positive for softmax weighting")
        if len(dists) == 0:
            return Chooser([], policy, weights=[], rng=rng)
        inverse = 1.0 / np.maximum(dists, _MIN_DISTANCE)
        return Chooser(
            np.arange(len(dists)), policy, rng=rng, log_weights=log_softmax(inverse / spread)
        )

    raise ValueError(f"Unsupported spatial policy: {policy.value}")


__all__ = ["ChooserPolicy", "Chooser", "new_uniform", "new_spatial"]
