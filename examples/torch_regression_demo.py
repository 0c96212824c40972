#!/usr/bin/env python3
"""
Demo: Training a Sparse Layer Stack with PyTorch

Wraps each layer of a sparse stack in a SparseLayerModule and trains the
stack with a torch optimizer on a synthetic regression task. Because the
module parameters share memory with the layers, the trained weights end up
in the numpy Layers, which are then saved and reloaded.

Target: y = sin(sum of the first half of x) - 0.5 * mean of the second half.
"""

from __future__ import annotations

import logging
import sys
import tempfile
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from sparsenet import (
    LayerSpec,
    build_layers,
    forward_stack,
    load_layers,
    save_layers,
    setup_logging,
)
from sparsenet.torch_integration import TORCH_AVAILABLE

logger = logging.getLogger("sparsenet.examples.regression")


def generate_data(n_samples: int, n_features: int, seed: int = 42) -> tuple[np.ndarray, np.ndarray]:
    """Generate a smooth nonlinear regression problem."""
    rng = np.random.default_rng(seed)
    X = rng.uniform(-1, 1, size=(n_samples, n_features))
    half = n_features // 2
    y = np.sin(X[:, :half].sum(axis=1)) - 0.5 * X[:, half:].mean(axis=1)
    return X, y[:, None]


def main():
    if not TORCH_AVAILABLE:
        print("This demo needs PyTorch: pip install torch")
        return

    import torch
    from sparsenet.torch_integration import SparseLayerModule

    setup_logging(logging.INFO)

    n_features = 16
    X, y = generate_data(2000, n_features)
    X_train, y_train = torch.from_numpy(X[:1600]), torch.from_numpy(y[:1600])
    X_test, y_test = torch.from_numpy(X[1600:]), torch.from_numpy(y[1600:])

    layers = build_layers(n_features, [
        LayerSpec(64, 8),
        LayerSpec(32, 8, spread=1.0),
        LayerSpec(8, 8, spread=0.5),
    ])
    modules = torch.nn.ModuleList([SparseLayerModule(l) for l in layers])

    # The last layer's outputs are averaged into one prediction.
    def model(x):
        for m in modules[:-1]:
            x = torch.tanh(m(x))
        return modules[-1](x).mean(dim=-1, keepdim=True)

    opt = torch.optim.Adam(modules.parameters(), lr=0.01)
    loss_fn = torch.nn.MSELoss()

    for epoch in range(200):
        perm = torch.randperm(len(X_train))
        for start in range(0, len(X_train), 64):
            batch = perm[start:start + 64]
            opt.zero_grad()
            loss = loss_fn(model(X_train[batch]), y_train[batch])
            loss.backward()
            opt.step()

        if epoch % 20 == 0 or epoch == 199:
            with torch.no_grad():
                test_loss = loss_fn(model(X_test), y_test).item()
            logger.info("epoch %3d: test MSE %.4f", epoch, test_loss)

    # The numpy layers hold the trained parameters.
    hidden = forward_stack(layers[:-1], X[1600:], activation=np.tanh)
    numpy_pred = layers[-1].forward(hidden).mean(axis=-1, keepdims=True)
    with torch.no_grad():
        torch_pred = model(X_test).numpy()
    logger.info("numpy/torch max difference: %.2e", np.max(np.abs(numpy_pred - torch_pred)))

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "stack.pkl"
        save_layers(layers, path)
        reloaded = load_layers(path)
        hidden = forward_stack(reloaded[:-1], X[1600:], activation=np.tanh)
        pred = reloaded[-1].forward(hidden).mean(axis=-1, keepdims=True)
        reload_mse = np.mean((pred - y[1600:]) ** 2)
    logger.info("reloaded stack test MSE: %.4f", reload_mse)


if __name__ == "__main__":
    main()
