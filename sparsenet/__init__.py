"""
sparsenet: spatially-arranged sparse neural network layers

Neurons are given synthetic positions in the unit cube and each output
neuron connects to a small subset of input neurons, chosen uniformly for
the first layer and biased toward nearby neurons for every later one. The
layers evaluate forward passes and propagate exact gradients through the
sparse connectivity, in both reverse mode and forward mode (R-operator).

Features:
- Biased sampling without replacement (uniform, noisy-rank, softmax-weighted)
- Sparse layers with reproducible, explicitly seeded topology generation
- Reverse-mode gradients and directional derivatives through the same
  index bookkeeping
- Finite-difference checker for any Result / RResult node
- Pickle and JSON serialization of layers and layer stacks
- Optional PyTorch module wrapper with an exact backward pass
"""

from sparsenet.coords import (
    Coordinate,
    distance,
    distances,
    coords_to_array,
    random_coordinates,
)
from sparsenet.chooser import (
    Chooser,
    ChooserPolicy,
    new_uniform,
    new_spatial,
)
from sparsenet.autodiff import (
    Variable,
    RVariable,
    Result,
    RResult,
    Gradient,
    RGradient,
    RVector,
    zero_gradient,
    zero_r_gradient,
)
from sparsenet.layer import (
    Layer,
    LayerResult,
    LayerRResult,
    new_unbiased,
    new_from,
)
from sparsenet.topology import (
    LayerSpec,
    build_layers,
    build_layers_from_topology,
    forward_stack,
)
from sparsenet.gradcheck import FuncChecker
from sparsenet.io import (
    save_layer,
    load_layer,
    save_layers,
    load_layers,
    serialize_layer,
    deserialize_layer,
)
from sparsenet.errors import (
    SparseNetError,
    ConnectionCountError,
    ChooserExhaustedError,
    ShapeMismatchError,
    GradientCheckError,
)
from sparsenet.logging_config import setup_logging

__version__ = "0.1.0"
__all__ = [
    # Coordinates
    "Coordinate",
    "distance",
    "distances",
    "coords_to_array",
    "random_coordinates",
    # Choosers
    "Chooser",
    "ChooserPolicy",
    "new_uniform",
    "new_spatial",
    # Autodiff interface
    "Variable",
    "RVariable",
    "Result",
    "RResult",
    "Gradient",
    "RGradient",
    "RVector",
    "zero_gradient",
    "zero_r_gradient",
    # Layers
    "Layer",
    "LayerResult",
    "LayerRResult",
    "new_unbiased",
    "new_from",
    # Stacks
    "LayerSpec",
    "build_layers",
    "build_layers_from_topology",
    "forward_stack",
    # Gradient checking
    "FuncChecker",
    # I/O utilities
    "save_layer",
    "load_layer",
    "save_layers",
    "load_layers",
    "serialize_layer",
    "deserialize_layer",
    # Errors
    "SparseNetError",
    "ConnectionCountError",
    "ChooserExhaustedError",
    "ShapeMismatchError",
    "GradientCheckError",
    # Logging
    "setup_logging",
]
