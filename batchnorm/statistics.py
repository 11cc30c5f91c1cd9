"""
Two-Pass Group Statistics

    pass 1:  mean     = (1/M) * sum(x_i)
    pass 2:  variance = (1/M) * sum((x_i - mean)^2)

The second pass uses the completed pass-1 mean; there is no single-pass or
sum-of-squares shortcut. Everything is accumulated in float64 whatever the
storage precision of the input.
"""

from dataclasses import dataclass

import numpy as np


def block_sum(values: np.ndarray, block_size: int = 0) -> np.ndarray:
    """Row sums of a (groups x members) array.

    With ``block_size > 0`` each row is first summed in blocks of that width
    and the block partials are then combined.
    """
    members = values.shape[1]
    if block_size <= 0 or block_size >= members:
        return values.sum(axis=1)
    num_blocks = -(-members // block_size)
    pad = num_blocks * block_size - members
    if pad:
        values = np.pad(values, ((0, 0), (0, pad)))
    partials = values.reshape(values.shape[0], num_blocks, block_size).sum(axis=2)
    return partials.sum(axis=1)


def inverse_std(variance, epsilon: float):
    """1 / sqrt(variance + epsilon)."""
    return 1.0 / np.sqrt(np.asarray(variance, dtype=np.float64) + epsilon)


@dataclass
class GroupStatistics:
    """Per-group biased mean and variance of one batch."""

    mean: np.ndarray
    variance: np.ndarray
    group_size: int

    def inv_variance(self, epsilon: float) -> np.ndarray:
        return inverse_std(self.variance, epsilon)


class StatisticsAccumulator:
    """Computes group means and variances with two full passes.

    Args:
        block_size (int): Width of the blocked partial sums, 0 to sum
            each group in one go.
    """

    def __init__(self, block_size: int = 0):
        self.block_size = int(block_size)

    def accumulate(self, values) -> GroupStatistics:
        """
        Args:
            values: (groups, members) array, or a 1-D array for one group.

        Returns:
            GroupStatistics with one mean/variance entry per group.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.ndim == 1:
            values = values[None, :]
        members = values.shape[1]

        mean = block_sum(values, self.block_size) / members

        centered = values - mean[:, None]
        variance = block_sum(centered * centered, self.block_size) / members

        return GroupStatistics(mean=mean, variance=variance, group_size=members)
