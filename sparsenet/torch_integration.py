"""
PyTorch integration for sparse layers.

SparseLayerModule wraps a Layer as a torch.nn.Module. Unlike a plain
inference wrapper it is trainable: its ``weights`` and ``biases``
parameters share memory with the layer's Variables, and its backward pass
runs the same sparse gradient kernels as the numpy evaluator. A torch
optimizer stepping the module therefore updates the live Layer.

Usage:
    from sparsenet import Layer
    from sparsenet.torch_integration import SparseLayerModule

    layer = Layer.unbiased(784, 1000, 300, rng=0)
    module = SparseLayerModule(layer)
    y = module(x_tensor)
    y.sum().backward()

Note:
    Requires PyTorch to be installed: pip install torch
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from sparsenet.errors import ShapeMismatchError
from sparsenet.layer import sparse_backward, sparse_forward

# Lazy import of torch
try:
    import torch
    import torch.nn as nn
    TORCH_AVAILABLE = True
except ImportError:  # pragma: no cover
    torch = None
    nn = None
    TORCH_AVAILABLE = False

if TYPE_CHECKING:
    from sparsenet.layer import Layer


def _check_torch_available() -> None:
    """Raise ImportError if torch is not available."""
    if not TORCH_AVAILABLE:
        raise ImportError(
            "PyTorch is required for torch integration. "
            "Please install it with: pip install torch"
        )


def _to_numpy(t) -> np.ndarray:
    return t.detach().cpu().numpy().astype(np.float64, copy=False)


class SparseLayerFunction(torch.autograd.Function if TORCH_AVAILABLE else object):
    """Autograd function running the numpy sparse kernels."""

    @staticmethod
    def forward(ctx, x, weights, biases, indices):
        x_np = _to_numpy(x)
        out = sparse_forward(indices, _to_numpy(weights), _to_numpy(biases), x_np)

        ctx.save_for_backward(x, weights, biases)
        ctx.indices = indices
        return torch.from_numpy(out).to(device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_output):
        x, weights, biases = ctx.saved_tensors
        weight_grad, bias_grad, input_grad = sparse_backward(
            ctx.indices,
            _to_numpy(weights),
            _to_numpy(x),
            _to_numpy(grad_output),
        )

        grad_x = grad_w = grad_b = None
        if ctx.needs_input_grad[0]:
            grad_x = torch.from_numpy(input_grad).to(device=x.device, dtype=x.dtype)
        if ctx.needs_input_grad[1]:
            grad_w = torch.from_numpy(weight_grad).to(device=weights.device, dtype=weights.dtype)
        if ctx.needs_input_grad[2]:
            grad_b = torch.from_numpy(bias_grad).to(device=biases.device, dtype=biases.dtype)
        return grad_x, grad_w, grad_b, None


class SparseLayerModule(nn.Module if TORCH_AVAILABLE else object):
    """
    Trainable torch.nn.Module view of a Layer.

    The ``weights`` and ``biases`` parameters are float64 tensors backed by
    the layer's own parameter arrays. Replacing ``layer.weights.vector``
    with a new array after wrapping breaks that link; mutate it in place.

    Args:
        layer: The Layer to wrap

    Example:
        >>> module = SparseLayerModule(layer)
        >>> opt = torch.optim.SGD(module.parameters(), lr=0.1)
        >>> loss = module(x).pow(2).sum()
        >>> loss.backward()
        >>> opt.step()  # layer.weights.vector changes too
    """

    def __init__(self, layer: Layer):
        _check_torch_available()
        super().__init__()

        from sparsenet.layer import Layer as L
        if not isinstance(layer, L):
            raise TypeError(
                f"Expected Layer instance, got {type(layer).__name__}"
            )

        self._layer = layer
        self.weights = nn.Parameter(torch.from_numpy(layer.weights.vector))
        self.biases = nn.Parameter(torch.from_numpy(layer.biases.vector))

    @property
    def layer(self) -> Layer:
        """Access the underlying Layer."""
        return self._layer

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Evaluate the layer.

        Args:
            x: Tensor of shape (in_count,) or (N, in_count)

        Returns:
            Tensor of shape (out_count,) or (N, out_count)
        """
        if x.dim() == 0 or x.shape[-1] != self._layer.in_count:
            raise ShapeMismatchError(
                f"Expected input of length {self._layer.in_count}, got shape {tuple(x.shape)}"
            )
        return SparseLayerFunction.apply(x, self.weights, self.biases, self._layer.indices)

    def extra_repr(self) -> str:
        """Extra representation for print."""
        layer = self._layer
        return f"in={layer.in_count}, out={layer.out_count}, conn={layer.conn_count}"


__all__ = ["SparseLayerFunction", "SparseLayerModule", "TORCH_AVAILABLE"]
