"""
Running (inference-time) statistics.

    running_mean     = running_mean * (1 - momentum) + mean * momentum
    running_variance = momentum * running_variance + (1 - momentum) * adjusted

where ``adjusted`` is the Bessel-corrected batch variance, M/(M-1) * variance,
or the biased variance itself when the group holds a single sample. The mean
weights the new estimate by momentum while the variance weights the old one.
"""

from dataclasses import dataclass

import numpy as np

from .errors import BatchNormConfigError, check_momentum
from .grouping import statistics_shape
from .statistics import GroupStatistics


@dataclass
class RunningStatistics:
    """Caller-owned running mean and variance, mutated in place by training."""

    mean: np.ndarray
    variance: np.ndarray

    @classmethod
    def create(cls, mode, shape) -> "RunningStatistics":
        """Zero mean / unit variance arrays sized for ``mode`` and ``shape``."""
        size = statistics_shape(mode, shape)
        return cls(mean=np.zeros(size), variance=np.ones(size))

    def validate(self, num_groups: int):
        for name, arr in (("running mean", self.mean), ("running variance", self.variance)):
            if not isinstance(arr, np.ndarray) or arr.ndim != 1:
                raise BatchNormConfigError(f"{name} must be a 1-D numpy array")
            if not np.issubdtype(arr.dtype, np.floating):
                raise BatchNormConfigError(
                    f"{name} must have a floating-point dtype, got {arr.dtype}"
                )
            if arr.shape[0] != num_groups:
                raise BatchNormConfigError(
                    f"{name} has {arr.shape[0]} entries, expected {num_groups}"
                )
            if not arr.flags.writeable:
                raise BatchNormConfigError(f"{name} must be writeable")


def bessel_adjust(variance, group_size: int):
    """Unbiased variance estimate; a single sample is left uncorrected."""
    if group_size == 1:
        return variance
    return variance * (group_size / (group_size - 1.0))


class RunningStatsUpdater:
    """Blends batch statistics into RunningStatistics.

    Args:
        momentum (float): Blend factor in [0, 1].
    """

    def __init__(self, momentum: float = 0.1):
        self.momentum = check_momentum(momentum)

    def update(self, running: RunningStatistics, stats: GroupStatistics):
        m = self.momentum
        running.mean[...] = running.mean * (1.0 - m) + stats.mean * m

        adjusted = bessel_adjust(stats.variance, stats.group_size)
        running.variance[...] = m * running.variance + (1.0 - m) * adjusted
