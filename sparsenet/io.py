"""
Saving and loading sparse layers.

A layer is fully described by its output coordinates, its index table,
its weights and biases, and its input count. This module converts layers
to and from a plain-dict state holding exactly those pieces, and offers
two encodings of that state:

- pickle files (save_layer / load_layer, save_layers / load_layers)
- JSON bytes (serialize_layer / deserialize_layer) for interchange

Usage:
    from sparsenet import save_layers, load_layers

    save_layers(layers, "model.pkl")
    layers2 = load_layers("model.pkl")

Note:
    Pickle files contain Python objects and should only be loaded from
    trusted sources.
"""

from __future__ import annotations

import json
import logging
import pickle
from pathlib import Path
from typing import Any, Dict, Sequence, Union

import numpy as np

from sparsenet.autodiff import Variable
from sparsenet.coords import Coordinate
from sparsenet.layer import Layer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_STATE_KEYS = ("in_count", "coords", "indices", "weights", "biases")


def layer_to_state(layer: Layer) -> Dict[str, Any]:
    """Extract the serializable state of a Layer."""
    return {
        "in_count": layer.in_count,
        "coords": [[c.x, c.y, c.z] for c in layer.coords],
        "indices": layer.indices.copy(),
        "weights": layer.weights.vector.copy(),
        "biases": layer.biases.vector.copy(),
    }


def state_to_layer(state: Dict[str, Any]) -> Layer:
    """
    Reconstruct a Layer from its state.

    Raises:
        TypeError: If state is not a layer state dict
    """
    if not isinstance(state, dict) or any(k not in state for k in _STATE_KEYS):
        raise TypeError("Invalid layer state")

    coords = [Coordinate(float(x), float(y), float(z)) for x, y, z in state["coords"]]
    return Layer(
        coords=coords,
        indices=np.asarray(state["indices"], dtype=np.int64).reshape(len(coords), -1),
        weights=Variable(state["weights"], name="weights"),
        biases=Variable(state["biases"], name="biases"),
        in_count=int(state["in_count"]),
    )


def _check_layer(layer: Any) -> None:
    if not isinstance(layer, Layer):
        raise TypeError(f"Expected Layer instance, got {type(layer).__name__}")


def save_layer(layer: Layer, path: PathLike) -> None:
    """
    Save a Layer to a file.

    Args:
        layer: Layer instance to save
        path: File path (will be created/overwritten)

    Raises:
        TypeError: If layer is not a Layer instance
    """
    _check_layer(layer)
    path = Path(path)
    with open(path, 'wb') as f:
        pickle.dump({"layer": layer_to_state(layer)}, f, protocol=pickle.HIGHEST_PROTOCOL)
    logger.info("Saved %r to %s", layer, path)


def load_layer(path: PathLike) -> Layer:
    """
    Load a Layer from a file written by save_layer().

    Raises:
        TypeError: If the file does not hold a layer
        FileNotFoundError: If path does not exist
    """
    path = Path(path)
    with open(path, 'rb') as f:
        state = pickle.load(f)

    if not isinstance(state, dict) or "layer" not in state:
        raise TypeError("Invalid layer file format")

    return state_to_layer(state["layer"])


def save_layers(layers: Sequence[Layer], path: PathLike) -> None:
    """
    Save a stack of layers to a single file.

    Raises:
        TypeError: If any element is not a Layer
    """
    for layer in layers:
        _check_layer(layer)

    path = Path(path)
    with open(path, 'wb') as f:
        pickle.dump(
            {"layers": [layer_to_state(l) for l in layers]},
            f,
            protocol=pickle.HIGHEST_PROTOCOL,
        )
    logger.info("Saved %d layers to %s", len(layers), path)


def load_layers(path: PathLike) -> list[Layer]:
    """
    Load a stack of layers written by save_layers().

    Raises:
        TypeError: If the file does not hold a layer stack
        FileNotFoundError: If path does not exist
    """
    path = Path(path)
    with open(path, 'rb') as f:
        state = pickle.load(f)

    if not isinstance(state, dict) or "layers" not in state:
        raise TypeError("Invalid layer stack file format")

    return [state_to_layer(s) for s in state["layers"]]


def serialize_layer(layer: Layer) -> bytes:
    """Encode a Layer as UTF-8 JSON."""
    _check_layer(layer)
    state = layer_to_state(layer)
    state["indices"] = state["indices"].tolist()
    state["weights"] = state["weights"].tolist()
    state["biases"] = state["biases"].tolist()
    return json.dumps(state).encode("utf-8")


def deserialize_layer(data: Union[bytes, str]) -> Layer:
    """
    Decode a Layer produced by serialize_layer().

    Raises:
        TypeError: If the JSON does not describe a layer
        json.JSONDecodeError: If data is not valid JSON
    """
    return state_to_layer(json.loads(data))


__all__ = [
    "layer_to_state",
    "state_to_layer",
    "save_layer",
    "load_layer",
    "save_layers",
    "load_layers",
    "serialize_layer",
    "deserialize_layer",
]
