"""
Neuron coordinates in 3-space.

Every neuron of a sparse layer is placed somewhere in the unit cube. The
positions carry no behaviour of their own; they only feed distances into the
spatial choosers that decide which inputs an output neuron connects to.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np


@dataclass(frozen=True)
class Coordinate:
    """A neuron's location in 3-space, typically inside [0, 1)^3."""
    x: float
    y: float
    z: float

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)


PointsLike = Union[Sequence[Coordinate], np.ndarray]


def distance(a: Coordinate, b: Coordinate) -> float:
    """Euclidean distance between two coordinates."""
    return math.sqrt((a.x - b.x) ** 2 + (a.y - b.y) ** 2 + (a.z - b.z) ** 2)


def coords_to_array(coords: PointsLike) -> np.ndarray:
    """
    Stack coordinates into an (N, 3) float array.

    Accepts either a sequence of Coordinate or something already shaped
    (N, 3).
    """
    if isinstance(coords, np.ndarray):
        arr = np.asarray(coords, dtype=np.float64)
    elif len(coords) == 0:
        arr = np.zeros((0, 3))
    else:
        arr = np.array([[c.x, c.y, c.z] for c in coords], dtype=np.float64)

    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Expected points of shape (N, 3), got {arr.shape}")
    return arr


def distances(points: PointsLike, target: Coordinate) -> np.ndarray:
    """
    Distance from every point to ``target``.

    Args:
        points: Sequence of Coordinate or (N, 3) array
        target: Reference coordinate

    Returns:
        Array of shape (N,)
    """
    arr = coords_to_array(points)
    diff = arr - target.as_array()
    return np.sqrt(np.sum(diff ** 2, axis=1))


def random_coordinates(count: int, rng: np.random.Generator) -> list[Coordinate]:
    """Draw ``count`` coordinates uniformly from the unit cube."""
    samples = rng.random((count, 3))
    return [Coordinate(float(x), float(y), float(z)) for x, y, z in samples]


__all__ = [
    "Coordinate",
    "distance",
    "distances",
    "coords_to_array",
    "random_coordinates",
]
