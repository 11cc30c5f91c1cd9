"""
Forward Batch Normalization

Four variants share one engine:

    regime          statistics                                  side effects
    ─────────────   ─────────────────────────────────────────   ─────────────────────────
    training        computed from the batch (two passes)        running update, saved stats
    inference       supplied estimates, or batch statistics     none
                    when no estimate is given

Each regime works for both parameterizations (per-activation, spatial); the
group-indexing strategy is the only thing that differs between them.
"""

from typing import NamedTuple, Optional

import numpy as np

from .errors import check_epsilon, check_group_array, check_pair
from .grouping import BatchNormMode, make_grouping
from .normalizer import normalize
from .running_stats import RunningStatistics, RunningStatsUpdater
from .statistics import StatisticsAccumulator, inverse_std
from .tensor_view import TensorView, as_view


class ForwardResult(NamedTuple):
    y: TensorView
    saved_mean: Optional[np.ndarray] = None
    saved_inv_variance: Optional[np.ndarray] = None


class ForwardEngine:
    """Batch-norm forward pass for one parameterization.

    Args:
        mode: ``BatchNormMode`` or its string value.
        epsilon (float): Added to the variance before the square root.
        momentum (float): Running-statistics blend factor.
        block_size (int): Blocked accumulation width (0 disables).
    """

    def __init__(self, mode, epsilon: float = 1e-5, momentum: float = 0.1,
                 block_size: int = 0):
        self.mode = BatchNormMode.parse(mode)
        self.epsilon = check_epsilon(epsilon)
        self.accumulator = StatisticsAccumulator(block_size)
        self.updater = RunningStatsUpdater(momentum)

    @property
    def momentum(self) -> float:
        return self.updater.momentum

    def train(self, x, scale, bias, save_stats: bool = False,
              running: Optional[RunningStatistics] = None) -> ForwardResult:
        """Normalize with batch statistics.

        Args:
            x: Input TensorView or (N, C, H, W) array.
            scale, bias: Per-group parameters.
            save_stats (bool): Also return the batch mean and inverse std.
            running (RunningStatistics, optional): Updated in place when given.

        Returns:
            ForwardResult(y, saved_mean, saved_inv_variance); the saved
            entries are None unless ``save_stats`` is set.
        """
        view = as_view(x)
        grouping = make_grouping(self.mode, view)
        scale = check_group_array("scale", scale, grouping.num_groups)
        bias = check_group_array("bias", bias, grouping.num_groups)
        if running is not None:
            running.validate(grouping.num_groups)

        y = view.empty_like()
        with np.errstate(all="ignore"):
            values = grouping.gather()
            stats = self.accumulator.accumulate(values)
            if running is not None:
                self.updater.update(running, stats)
            inv_variance = stats.inv_variance(self.epsilon)
            grouping.scatter(
                normalize(values, stats.mean, inv_variance, scale, bias), y.buffer
            )

        if save_stats:
            return ForwardResult(y, stats.mean, inv_variance)
        return ForwardResult(y)

    def infer(self, x, scale, bias, estimated_mean=None,
              estimated_variance=None) -> TensorView:
        """Normalize with supplied estimates, or with batch statistics when
        neither estimate is given. Nothing is saved or updated."""
        view = as_view(x)
        grouping = make_grouping(self.mode, view)
        num_groups = grouping.num_groups
        scale = check_group_array("scale", scale, num_groups)
        bias = check_group_array("bias", bias, num_groups)
        use_estimates = check_pair("estimated_mean", estimated_mean,
                                   "estimated_variance", estimated_variance)
        if use_estimates:
            mean = check_group_array("estimated_mean", estimated_mean, num_groups)
            variance = check_group_array("estimated_variance", estimated_variance, num_groups)

        y = view.empty_like()
        with np.errstate(all="ignore"):
            values = grouping.gather()
            if not use_estimates:
                stats = self.accumulator.accumulate(values)
                mean, variance = stats.mean, stats.variance
            inv_variance = inverse_std(variance, self.epsilon)
            grouping.scatter(normalize(values, mean, inv_variance, scale, bias), y.buffer)
        return y


def forward_train(mode, x, scale, bias, epsilon: float = 1e-5,
                  momentum: float = 0.1, save_stats: bool = False,
                  running: Optional[RunningStatistics] = None,
                  block_size: int = 0) -> ForwardResult:
    engine = ForwardEngine(mode, epsilon, momentum, block_size)
    return engine.train(x, scale, bias, save_stats=save_stats, running=running)


def forward_infer(mode, x, scale, bias, epsilon: float = 1e-5,
                  estimated_mean=None, estimated_variance=None,
                  block_size: int = 0) -> TensorView:
    engine = ForwardEngine(mode, epsilon, block_size=block_size)
    return engine.infer(x, scale, bias, estimated_mean, estimated_variance)
