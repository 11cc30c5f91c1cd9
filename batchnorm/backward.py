"""
Backward Batch Normalization

Gradients of y = scale * xhat + bias, xhat = (x - mean) * inv_var, through both
the mean and the variance dependency on x:

    dbias[g]  = sum_i dy_i
    dscale[g] = sum_i xhat_i * dy_i
    dx_i      = (inv_var / M) * (M * scale * dy_i - sum(scale * dy) - xhat_i * sum(scale * dy * xhat))

``dscale`` is reported as the raw sum in both parameterizations; it is the
true gradient with respect to scale and is also what the dx formula consumes.

The work is a two-phase protocol per group:

    phase 1  (accumulate)      group sums + cached xhat
    phase 2  (input_gradient)  per-element dx from the completed sums
"""

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from .errors import BatchNormConfigError, check_epsilon, check_group_array, check_pair
from .grouping import BatchNormMode, make_grouping
from .statistics import StatisticsAccumulator, block_sum, inverse_std
from .tensor_view import TensorView, as_view


class BackwardResult(NamedTuple):
    dx: TensorView
    dscale: np.ndarray
    dbias: np.ndarray


@dataclass
class GradientAccumulators:
    """Phase-1 output: per-group sums and the cached xhat table."""

    dbias: np.ndarray
    dscale: np.ndarray
    scaled_dy_sum: np.ndarray          # sum(scale * dy)
    scaled_dy_xhat_sum: np.ndarray     # sum(scale * dy * xhat)
    xhat: np.ndarray                   # (groups, members)
    inv_variance: np.ndarray


def _check_views(x, dy):
    x_view = as_view(x)
    dy_view = as_view(dy, "dy")
    if dy_view.shape != x_view.shape:
        raise BatchNormConfigError(
            f"dy shape {dy_view.shape} does not match x shape {x_view.shape}"
        )
    return x_view, dy_view


class BackwardEngine:
    """Batch-norm backward pass for one parameterization.

    Args:
        mode: ``BatchNormMode`` or its string value.
        epsilon (float): Used only when statistics must be recomputed.
        block_size (int): Blocked accumulation width (0 disables).
    """

    def __init__(self, mode, epsilon: float = 1e-5, block_size: int = 0):
        self.mode = BatchNormMode.parse(mode)
        self.epsilon = check_epsilon(epsilon)
        self.block_size = int(block_size)
        self.accumulator = StatisticsAccumulator(block_size)

    # ── Phase 1 ──

    def accumulate(self, x_values: np.ndarray, dy_values: np.ndarray, scale,
                   mean, inv_variance) -> GradientAccumulators:
        xhat = (x_values - mean[:, None]) * inv_variance[:, None]
        scaled_dy = scale[:, None] * dy_values
        return GradientAccumulators(
            dbias=block_sum(dy_values, self.block_size),
            dscale=block_sum(xhat * dy_values, self.block_size),
            scaled_dy_sum=block_sum(scaled_dy, self.block_size),
            scaled_dy_xhat_sum=block_sum(scaled_dy * xhat, self.block_size),
            xhat=xhat,
            inv_variance=inv_variance,
        )

    # ── Phase 2 ──

    @staticmethod
    def input_gradient(acc: GradientAccumulators, dy_values: np.ndarray,
                       scale) -> np.ndarray:
        members = dy_values.shape[1]
        scaled_dy = scale[:, None] * dy_values
        return (acc.inv_variance / members)[:, None] * (
            members * scaled_dy
            - acc.scaled_dy_sum[:, None]
            - acc.xhat * acc.scaled_dy_xhat_sum[:, None]
        )

    def run(self, x, dy, scale, saved_mean=None,
            saved_inv_variance=None) -> BackwardResult:
        """
        Args:
            x: Forward input (TensorView or (N, C, H, W) array).
            dy: Gradient of the forward output, same logical shape as x.
            scale: Per-group scale.
            saved_mean, saved_inv_variance: Statistics saved by the forward
                pass. Recomputed from x when neither is given.

        Returns:
            BackwardResult(dx, dscale, dbias); dx uses x's strides.
        """
        x_view, dy_view = _check_views(x, dy)
        x_groups = make_grouping(self.mode, x_view)
        num_groups = x_groups.num_groups
        scale = check_group_array("scale", scale, num_groups)
        use_saved = check_pair("saved_mean", saved_mean,
                               "saved_inv_variance", saved_inv_variance)
        if use_saved:
            mean = check_group_array("saved_mean", saved_mean, num_groups)
            inv_variance = check_group_array("saved_inv_variance",
                                             saved_inv_variance, num_groups)

        dx = x_view.empty_like()
        with np.errstate(all="ignore"):
            x_values = x_groups.gather()
            dy_values = make_grouping(self.mode, dy_view).gather()
            if not use_saved:
                stats = self.accumulator.accumulate(x_values)
                mean, inv_variance = stats.mean, stats.inv_variance(self.epsilon)

            acc = self.accumulate(x_values, dy_values, scale, mean, inv_variance)
            x_groups.scatter(self.input_gradient(acc, dy_values, scale), dx.buffer)

        return BackwardResult(dx, acc.dscale, acc.dbias)

    def run_frozen(self, x, dy, scale, mean, variance) -> BackwardResult:
        """Gradients when the statistics are constants (inference-mode forward).

        dx = scale * inv_var * dy; dscale and dbias as in ``run``.
        """
        x_view, dy_view = _check_views(x, dy)
        x_groups = make_grouping(self.mode, x_view)
        num_groups = x_groups.num_groups
        scale = check_group_array("scale", scale, num_groups)
        mean = check_group_array("mean", mean, num_groups)
        variance = check_group_array("variance", variance, num_groups)

        dx = x_view.empty_like()
        with np.errstate(all="ignore"):
            inv_variance = inverse_std(variance, self.epsilon)
            x_values = x_groups.gather()
            dy_values = make_grouping(self.mode, dy_view).gather()
            acc = self.accumulate(x_values, dy_values, scale, mean, inv_variance)
            x_groups.scatter((scale * inv_variance)[:, None] * dy_values, dx.buffer)

        return BackwardResult(dx, acc.dscale, acc.dbias)


def backward(mode, x, dy, scale, epsilon: float = 1e-5, saved_mean=None,
             saved_inv_variance=None, block_size: int = 0) -> BackwardResult:
    engine = BackwardEngine(mode, epsilon, block_size)
    return engine.run(x, dy, scale, saved_mean, saved_inv_variance)
