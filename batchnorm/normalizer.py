"""Per-group affine normalization: y = scale * (x - mean) * inv_variance + bias."""

import numpy as np


def normalize(values: np.ndarray, mean, inv_variance, scale, bias) -> np.ndarray:
    """Normalize a (groups x members) array with per-group statistics.

    All per-group arguments are 1-D arrays of length ``groups`` and are
    broadcast across the members of their group.
    """
    xhat = (values - mean[:, None]) * inv_variance[:, None]
    return scale[:, None] * xhat + bias[:, None]
