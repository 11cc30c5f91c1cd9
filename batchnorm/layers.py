"""
PyTorch integration: the engine behind an autograd Function and an nn.Module.

The engine runs on the host in float64; tensors are copied to CPU numpy on the
way in and cast back to the input's dtype/device on the way out. Running
statistics follow the engine's convention (the variance weights the old value
by momentum), which differs from nn.BatchNorm2d unless momentum is 0.5.
"""

import numpy as np
import torch
import torch.nn as nn
from torch.autograd.function import once_differentiable

from .backward import BackwardEngine
from .errors import BatchNormConfigError
from .forward import forward_infer, forward_train
from .grouping import BatchNormMode, statistics_shape
from .running_stats import RunningStatistics
from .statistics import inverse_std


def _to_numpy(t: torch.Tensor) -> np.ndarray:
    return t.detach().to(device="cpu", dtype=torch.float64).contiguous().numpy()


def _group_param(param, num_groups: int, fill: float) -> np.ndarray:
    if param is None:
        return np.full(num_groups, fill)
    return _to_numpy(param).reshape(-1)


class BatchNormFunction(torch.autograd.Function):
    """Autograd bridge for the host batch-norm engine.

    Uses batch statistics when ``training`` is set or no running statistics
    are given; otherwise normalizes with the running statistics and treats
    them as constants in the backward pass.
    """

    @staticmethod
    def forward(ctx, x, weight, bias, running_mean, running_var,
                mode, training, momentum, eps):
        mode = BatchNormMode.parse(mode)
        num_groups = statistics_shape(mode, x.shape)[0]
        x_np = _to_numpy(x)
        scale = _group_param(weight, num_groups, 1.0)
        shift = _group_param(bias, num_groups, 0.0)

        use_batch_stats = training or running_mean is None
        if use_batch_stats:
            running = None
            if training and running_mean is not None:
                running = RunningStatistics(_to_numpy(running_mean).copy(),
                                            _to_numpy(running_var).copy())
            result = forward_train(mode, x_np, scale, shift, eps, momentum,
                                   save_stats=True, running=running)
            if running is not None:
                running_mean.copy_(torch.from_numpy(running.mean))
                running_var.copy_(torch.from_numpy(running.variance))
            y = result.y
            ctx.mean, ctx.inv_variance = result.saved_mean, result.saved_inv_variance
        else:
            mean, variance = _to_numpy(running_mean), _to_numpy(running_var)
            y = forward_infer(mode, x_np, scale, shift, eps, mean, variance)
            ctx.mean, ctx.variance = mean, variance
            ctx.inv_variance = inverse_std(variance, eps)

        ctx.mode = mode
        ctx.eps = eps
        ctx.scale = scale
        ctx.use_batch_stats = use_batch_stats
        ctx.save_for_backward(x, weight, bias)

        out = torch.from_numpy(y.to_array())
        return out.to(dtype=x.dtype, device=x.device)

    @staticmethod
    @once_differentiable
    def backward(ctx, grad_output):
        x, weight, bias = ctx.saved_tensors
        engine = BackwardEngine(ctx.mode, ctx.eps)
        x_np, dy_np = _to_numpy(x), _to_numpy(grad_output)
        if ctx.use_batch_stats:
            result = engine.run(x_np, dy_np, ctx.scale, ctx.mean, ctx.inv_variance)
        else:
            result = engine.run_frozen(x_np, dy_np, ctx.scale, ctx.mean, ctx.variance)

        grad_x = grad_weight = grad_bias = None
        if ctx.needs_input_grad[0]:
            grad_x = torch.from_numpy(result.dx.to_array()).to(
                dtype=x.dtype, device=x.device
            )
        if weight is not None and ctx.needs_input_grad[1]:
            grad_weight = torch.from_numpy(result.dscale).to(weight).view_as(weight)
        if bias is not None and ctx.needs_input_grad[2]:
            grad_bias = torch.from_numpy(result.dbias).to(bias).view_as(bias)

        return grad_x, grad_weight, grad_bias, None, None, None, None, None, None


class BatchNorm(nn.Module):
    """Batch normalization over (N, C, H, W) inputs, computed by the host engine.

    Args:
        num_features (int): Number of groups: C for spatial mode,
            C*H*W for per-activation mode.
        mode (str): "spatial" or "per-activation".
        eps (float): Epsilon for numerical stability.
        momentum (float): Momentum for running stats, in [0, 1]. None is
            rejected.
        affine (bool): Learn a per-group scale and bias.
        track_running_stats (bool): Keep running mean/variance buffers.
    """

    def __init__(self, num_features: int, mode: str = "spatial",
                 eps: float = 1e-5, momentum: float = 0.1,
                 affine: bool = True, track_running_stats: bool = True):
        super().__init__()
        if momentum is None:
            raise BatchNormConfigError(
                "momentum must be a float in [0, 1]; cumulative averaging is not supported"
            )
        self.num_features = num_features
        self.mode = BatchNormMode.parse(mode)
        self.eps = eps
        self.momentum = momentum
        self.affine = affine
        self.track_running_stats = track_running_stats

        if affine:
            self.weight = nn.Parameter(torch.ones(num_features))
            self.bias = nn.Parameter(torch.zeros(num_features))
        else:
            self.register_parameter("weight", None)
            self.register_parameter("bias", None)

        if track_running_stats:
            self.register_buffer("running_mean", torch.zeros(num_features))
            self.register_buffer("running_var", torch.ones(num_features))
            self.register_buffer("num_batches_tracked", torch.tensor(0, dtype=torch.long))
        else:
            self.register_buffer("running_mean", None)
            self.register_buffer("running_var", None)
            self.register_buffer("num_batches_tracked", None)

    def reset_running_stats(self):
        if self.track_running_stats:
            self.running_mean.zero_()
            self.running_var.fill_(1)
            self.num_batches_tracked.zero_()

    def reset_parameters(self):
        self.reset_running_stats()
        if self.affine:
            nn.init.ones_(self.weight)
            nn.init.zeros_(self.bias)

    def _check_input(self, x: torch.Tensor):
        if x.dim() != 4:
            raise BatchNormConfigError(
                f"Expected a 4-D (N, C, H, W) input, got {x.dim()}-D"
            )
        groups = statistics_shape(self.mode, x.shape)[0]
        if groups != self.num_features:
            raise BatchNormConfigError(
                f"{self.mode.value} batch norm over {tuple(x.shape)} has {groups} "
                f"groups but the layer was built for {self.num_features}"
            )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: Input tensor of shape (N, C, H, W).

        Returns:
            Normalized and affine-transformed tensor of same shape.
        """
        self._check_input(x)

        if self.training and self.track_running_stats:
            self.num_batches_tracked += 1

        return BatchNormFunction.apply(
            x,
            self.weight,
            self.bias,
            self.running_mean,
            self.running_var,
            self.mode,
            self.training,
            self.momentum,
            self.eps,
        )

    def extra_repr(self) -> str:
        return (
            f"num_features={self.num_features}, mode={self.mode.value}, "
            f"eps={self.eps}, momentum={self.momentum}, affine={self.affine}, "
            f"track_running_stats={self.track_running_stats}"
        )
