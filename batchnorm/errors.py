"""
Configuration errors and the per-call precondition checks that raise them.

All checks run once per engine call, before any reduction touches the data.
Numerical edge cases (single-sample groups, NaN/Inf inputs) are not errors.
"""

import numpy as np


class BatchNormConfigError(ValueError):
    """Raised when a call's shapes, arrays or scalars cannot be honoured."""


def check_group_array(name: str, values, num_groups: int) -> np.ndarray:
    """Return ``values`` as a float64 vector of length ``num_groups``."""
    if values is None:
        raise BatchNormConfigError(f"{name} is required")
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.shape[0] != num_groups:
        raise BatchNormConfigError(
            f"{name} has {arr.shape[0]} entries, expected {num_groups} (one per group)"
        )
    return arr


def check_epsilon(epsilon: float) -> float:
    epsilon = float(epsilon)
    if not epsilon >= 0.0:
        raise BatchNormConfigError(f"epsilon must be non-negative, got {epsilon}")
    return epsilon


def check_momentum(momentum: float) -> float:
    momentum = float(momentum)
    if not 0.0 <= momentum <= 1.0:
        raise BatchNormConfigError(f"momentum must lie in [0, 1], got {momentum}")
    return momentum


def check_pair(first_name: str, first, second_name: str, second) -> bool:
    """Both or neither of a pair of statistics arrays must be supplied.

    Returns True when both are present.
    """
    if (first is None) != (second is None):
        missing = second_name if second is None else first_name
        raise BatchNormConfigError(
            f"{first_name} and {second_name} must be supplied together ({missing} is missing)"
        )
    return first is not None
