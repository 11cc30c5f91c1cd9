"""
Utility functions for the batch-norm driver and tests.

- Seeding
- Storage precisions
- Random problem generation
- AverageMeter for timings
"""

import random
from typing import NamedTuple

import numpy as np
import torch

from batchnorm import TensorView, statistics_shape


# ──────────────────────────────────────────────
# Seeding
# ──────────────────────────────────────────────

def seed_everything(seed: int):
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


# ──────────────────────────────────────────────
# Storage Precisions
# ──────────────────────────────────────────────

DTYPES = {
    "fp16": np.float16,
    "fp32": np.float32,
    "fp64": np.float64,
}


def resolve_dtype(name: str):
    """Map "fp16" / "fp32" / "fp64" to a numpy dtype."""
    try:
        return DTYPES[name]
    except KeyError:
        raise ValueError(
            f"Unknown dtype {name!r}, expected one of {sorted(DTYPES)}"
        ) from None


# ──────────────────────────────────────────────
# Random Problems
# ──────────────────────────────────────────────

class Problem(NamedTuple):
    x: TensorView
    dy: TensorView
    scale: np.ndarray
    bias: np.ndarray


def random_problem(shape, mode, dtype: str = "fp32", layout: str = "NCHW",
                   rng=None, offsets=None) -> Problem:
    """Random input, upstream gradient and affine parameters.

    Inputs are drawn around a per-channel offset (random unless given) so
    the mean subtraction is exercised. Passing the same offsets on every call
    draws i.i.d. batches from one distribution.
    """
    if rng is None:
        rng = np.random.default_rng()
    np_dtype = resolve_dtype(dtype)
    N, C, H, W = shape

    if offsets is None:
        offsets = rng.uniform(-2.0, 2.0, size=C)
    offsets = np.asarray(offsets, dtype=np.float64).reshape(1, C, 1, 1)
    x = (rng.standard_normal(shape) * 1.5 + offsets).astype(np_dtype)
    dy = rng.standard_normal(shape).astype(np_dtype)

    groups = statistics_shape(mode, shape)
    scale = rng.uniform(0.5, 1.5, size=groups)
    bias = rng.uniform(-0.5, 0.5, size=groups)

    return Problem(
        x=TensorView.from_array(x, layout),
        dy=TensorView.from_array(dy, layout),
        scale=scale,
        bias=bias,
    )


# ──────────────────────────────────────────────
# Timing
# ──────────────────────────────────────────────

class AverageMeter:
    """Computes and stores the average and current value."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.val = 0.0
        self.avg = 0.0
        self.sum = 0.0
        self.count = 0

    def update(self, val: float, n: int = 1):
        self.val = val
        self.sum += val * n
        self.count += n
        self.avg = self.sum / self.count
