"""
Batch-Norm Engine Configuration: numeric defaults and driver settings.

Host reference engine for batch normalization over (N, C, H, W) tensors.

Modes:
    - "spatial":        one mean/variance pair per channel
    - "per-activation": one mean/variance pair per (c, h, w) coordinate
"""

import os

# ──────────────────────────────────────────────
# Numerics
# ──────────────────────────────────────────────
EPSILON = 1e-5                 # Added to the variance before the square root
MOMENTUM = 0.1                 # Running-statistics blend factor
BLOCK_SIZE = 0                 # Blocked accumulation width (0 to disable)

# ──────────────────────────────────────────────
# Default Problem
# ──────────────────────────────────────────────
MODE = os.getenv("BN_MODE", "spatial")   # "spatial" | "per-activation"
LAYOUT = "NCHW"                # "NCHW" | "NHWC"
DTYPE = "fp32"                 # Storage precision of x / dy

BATCH_SIZE = 16
CHANNELS = 32
HEIGHT = 14
WIDTH = 14

# ──────────────────────────────────────────────
# Driver
# ──────────────────────────────────────────────
ITERATIONS = 10
SEED = 0

# Verification tolerance (rms_range) per storage precision
TOLERANCES = {
    "fp16": 1e-3,
    "fp32": 1e-5,
    "fp64": 1e-10,
}

# ──────────────────────────────────────────────
# Paths
# ──────────────────────────────────────────────
LOG_DIR = os.getenv("LOG_DIR", "./output/logs")


def get_tolerance(dtype: str) -> float:
    """Verification tolerance for a storage precision name."""
    return TOLERANCES.get(dtype, TOLERANCES["fp32"])
