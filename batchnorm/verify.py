"""
Verification against PyTorch

Reference results come from ``torch.nn.functional.batch_norm`` and autograd in
float64. Per-activation mode maps onto batch norm over an (N, C*H*W) view, so
every (c, h, w) coordinate becomes one feature.

Errors use the RMS-over-range metric

    rms_range(a, b) = ||a - b||_2 / (sqrt(n) * max(max|a|, max|b|))

which is 0 when both sides are all-zero.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import torch
import torch.nn.functional as F

from .backward import BackwardResult, backward
from .errors import BatchNormConfigError
from .forward import ForwardResult, forward_infer, forward_train
from .grouping import BatchNormMode
from .running_stats import RunningStatistics, bessel_adjust
from .tensor_view import TensorView


# ──────────────────────────────────────────────
# Error Metrics
# ──────────────────────────────────────────────

def rms_range(a, b) -> float:
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise BatchNormConfigError(f"Cannot compare {a.shape[0]} values with {b.shape[0]}")
    if a.size == 0:
        return 0.0
    magnitude = max(np.abs(a).max(), np.abs(b).max())
    if magnitude == 0:
        return 0.0
    return float(np.sqrt(np.sum((a - b) ** 2)) / (np.sqrt(a.size) * magnitude))


def max_abs_diff(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.size == 0:
        return 0.0
    return float(np.abs(a - b).max())


@dataclass
class VerificationReport:
    """Named rms_range errors of one engine call against its reference."""

    name: str
    tolerance: float
    errors: Dict[str, float] = field(default_factory=dict)

    def add(self, key: str, engine, reference):
        self.errors[key] = rms_range(engine, reference)

    @property
    def passed(self) -> bool:
        return all(err <= self.tolerance for err in self.errors.values())

    def summary(self) -> str:
        status = "PASSED" if self.passed else "FAILED"
        details = "  ".join(f"{k}={v:.3e}" for k, v in self.errors.items())
        return f"{self.name}: {status}  (tol={self.tolerance:.1e})  {details}"


# ──────────────────────────────────────────────
# Torch References
# ──────────────────────────────────────────────

def _logical(x) -> np.ndarray:
    if isinstance(x, TensorView):
        return x.to_array()
    return np.asarray(x)


def _grouped(mode, x: torch.Tensor) -> torch.Tensor:
    if BatchNormMode.parse(mode) is BatchNormMode.PER_ACTIVATION:
        return x.reshape(x.shape[0], -1)
    return x


def _as_double(values) -> torch.Tensor:
    return torch.as_tensor(np.asarray(values, dtype=np.float64))


def reference_statistics(mode, x, epsilon: float):
    """Batch mean, biased variance and inverse std per group."""
    xt = _grouped(mode, _as_double(_logical(x)))
    dims = [0] + list(range(2, xt.dim()))
    mean = xt.mean(dim=dims)
    variance = xt.var(dim=dims, unbiased=False)
    inv_variance = 1.0 / torch.sqrt(variance + epsilon)
    return mean.numpy(), variance.numpy(), inv_variance.numpy()


def reference_forward_train(mode, x, scale, bias, epsilon: float):
    """Training-mode output with batch statistics."""
    x = _logical(x)
    xt = _grouped(mode, _as_double(x))
    y = F.batch_norm(xt, None, None, weight=_as_double(scale), bias=_as_double(bias),
                     training=True, eps=epsilon)
    return y.reshape(x.shape).numpy()


def reference_running_update(mode, x, running_mean, running_variance,
                             momentum: float):
    """Running statistics after one training step, in the engine's convention."""
    x = _logical(x)
    mean, variance, _ = reference_statistics(mode, x, 0.0)
    group_size = x.size // mean.shape[0]
    new_mean = np.asarray(running_mean) * (1.0 - momentum) + mean * momentum
    new_variance = (momentum * np.asarray(running_variance)
                    + (1.0 - momentum) * bessel_adjust(variance, group_size))
    return new_mean, new_variance


def reference_forward_infer(mode, x, scale, bias, epsilon: float,
                            estimated_mean=None, estimated_variance=None):
    x = _logical(x)
    if estimated_mean is None:
        return reference_forward_train(mode, x, scale, bias, epsilon)
    xt = _grouped(mode, _as_double(x))
    y = F.batch_norm(xt, _as_double(estimated_mean), _as_double(estimated_variance),
                     weight=_as_double(scale), bias=_as_double(bias),
                     training=False, eps=epsilon)
    return y.reshape(x.shape).numpy()


def reference_backward(mode, x, dy, scale, bias, epsilon: float):
    """dx, dscale, dbias from autograd through training-mode batch norm."""
    x = _logical(x)
    xt = _as_double(x).clone().requires_grad_(True)
    weight = _as_double(scale).clone().requires_grad_(True)
    shift = _as_double(bias).clone().requires_grad_(True)

    y = F.batch_norm(_grouped(mode, xt), None, None, weight=weight, bias=shift,
                     training=True, eps=epsilon)
    y.backward(_grouped(mode, _as_double(_logical(dy))))
    return xt.grad.numpy(), weight.grad.numpy(), shift.grad.numpy()


# ──────────────────────────────────────────────
# Engine vs Reference
# ──────────────────────────────────────────────

def verify_forward_train(mode, x: TensorView, scale, bias, epsilon: float,
                         momentum: float, running: Optional[RunningStatistics] = None,
                         tolerance: float = 1e-5, block_size: int = 0):
    """Run a training forward pass and compare it with the torch reference.

    Returns:
        (ForwardResult, VerificationReport)
    """
    report = VerificationReport("forward-train", tolerance)
    if running is not None:
        expected_mean, expected_variance = reference_running_update(
            mode, x, running.mean.copy(), running.variance.copy(), momentum
        )

    result: ForwardResult = forward_train(mode, x, scale, bias, epsilon, momentum,
                                          save_stats=True, running=running,
                                          block_size=block_size)

    mean, _, inv_variance = reference_statistics(mode, x, epsilon)
    report.add("y", result.y.to_array(),
               reference_forward_train(mode, x, scale, bias, epsilon))
    report.add("saved_mean", result.saved_mean, mean)
    report.add("saved_inv_variance", result.saved_inv_variance, inv_variance)
    if running is not None:
        report.add("running_mean", running.mean, expected_mean)
        report.add("running_variance", running.variance, expected_variance)
    return result, report


def verify_forward_infer(mode, x: TensorView, scale, bias, epsilon: float,
                         estimated_mean=None, estimated_variance=None,
                         tolerance: float = 1e-5, block_size: int = 0):
    """Returns (y, VerificationReport)."""
    report = VerificationReport("forward-infer", tolerance)
    y = forward_infer(mode, x, scale, bias, epsilon, estimated_mean,
                      estimated_variance, block_size=block_size)
    report.add("y", y.to_array(),
               reference_forward_infer(mode, x, scale, bias, epsilon,
                                       estimated_mean, estimated_variance))
    return y, report


def verify_backward(mode, x: TensorView, dy: TensorView, scale, bias,
                    epsilon: float, saved_mean=None, saved_inv_variance=None,
                    tolerance: float = 1e-5, block_size: int = 0):
    """Returns (BackwardResult, VerificationReport)."""
    report = VerificationReport("backward", tolerance)
    result: BackwardResult = backward(mode, x, dy, scale, epsilon, saved_mean,
                                      saved_inv_variance, block_size=block_size)
    dx, dscale, dbias = reference_backward(mode, x, dy, scale, bias, epsilon)
    report.add("dx", result.dx.to_array(), dx)
    report.add("dscale", result.dscale, dscale)
    report.add("dbias", result.dbias, dbias)
    return result, report
