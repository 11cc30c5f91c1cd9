"""
Batch-Norm Engine Driver

Runs the host batch-norm engine on random (N, C, H, W) problems.

Features:
- Spatial and per-activation modes
- NCHW / NHWC layouts, fp16 / fp32 / fp64 storage
- Training or inference forward, optional backward
- Saved statistics reused by the backward pass
- Running statistics carried across iterations
- Verification against PyTorch (rms_range)
- TensorBoard logging
"""

import os
import sys
import time
import argparse

import numpy as np
from torch.utils.tensorboard import SummaryWriter

# Allow running from project root
sys.path.insert(0, os.path.dirname(__file__))

import config
from batchnorm import (
    BatchNormConfigError,
    BatchNormMode,
    RunningStatistics,
    backward,
    forward_infer,
    forward_train,
)
from batchnorm.verify import (
    verify_backward,
    verify_forward_infer,
    verify_forward_train,
)
from utils import AverageMeter, random_problem, seed_everything


def build_parser():
    parser = argparse.ArgumentParser(description="Batch-Norm Engine Driver")
    parser.add_argument("--mode", type=str, default=config.MODE,
                        choices=[m.value for m in BatchNormMode])
    parser.add_argument("-n", "--batch", type=int, default=config.BATCH_SIZE)
    parser.add_argument("-c", "--channels", type=int, default=config.CHANNELS)
    parser.add_argument("-H", "--height", type=int, default=config.HEIGHT)
    parser.add_argument("-W", "--width", type=int, default=config.WIDTH)
    parser.add_argument("--layout", type=str, default=config.LAYOUT,
                        choices=["NCHW", "NHWC"])
    parser.add_argument("--dtype", type=str, default=config.DTYPE,
                        choices=["fp16", "fp32", "fp64"])
    parser.add_argument("--forward", type=str, default="train",
                        choices=["train", "infer"])
    parser.add_argument("--backward", action="store_true",
                        help="Also run the backward pass")
    parser.add_argument("--save-stats", action="store_true",
                        help="Save batch statistics and reuse them in backward")
    parser.add_argument("--track-running", action="store_true",
                        help="Update running statistics across iterations")
    parser.add_argument("--iterations", type=int, default=config.ITERATIONS)
    parser.add_argument("--epsilon", type=float, default=config.EPSILON)
    parser.add_argument("--momentum", type=float, default=config.MOMENTUM)
    parser.add_argument("--block-size", type=int, default=config.BLOCK_SIZE)
    parser.add_argument("--verify", action="store_true",
                        help="Compare every result with PyTorch")
    parser.add_argument("--tolerance", type=float, default=None,
                        help="rms_range tolerance (default depends on dtype)")
    parser.add_argument("--seed", type=int, default=config.SEED)
    parser.add_argument("--log-dir", type=str, default=None,
                        help=f"TensorBoard directory (e.g. {config.LOG_DIR})")
    return parser


def run(args) -> int:
    """Run the requested passes; return the number of failed verifications."""
    mode = BatchNormMode.parse(args.mode)
    shape = (args.batch, args.channels, args.height, args.width)
    tolerance = (args.tolerance if args.tolerance is not None
                 else config.get_tolerance(args.dtype))

    seed_everything(args.seed)
    rng = np.random.default_rng(args.seed)
    offsets = rng.uniform(-2.0, 2.0, size=args.channels)

    running = RunningStatistics.create(mode, shape) if args.track_running else None
    if args.forward == "infer" and running is not None:
        print("Running estimated mean / var inference.")

    writer = None
    if args.log_dir:
        os.makedirs(args.log_dir, exist_ok=True)
        writer = SummaryWriter(log_dir=args.log_dir)

    fwd_time = AverageMeter()
    bwd_time = AverageMeter()
    failures = 0

    for it in range(args.iterations):
        problem = random_problem(shape, mode, args.dtype, args.layout,
                                 rng=rng, offsets=offsets)
        reports = []
        saved_mean = saved_inv_variance = None

        # ── Forward ──
        t0 = time.perf_counter()
        if args.forward == "train":
            if args.verify:
                result, report = verify_forward_train(
                    mode, problem.x, problem.scale, problem.bias,
                    args.epsilon, args.momentum, running=running,
                    tolerance=tolerance, block_size=args.block_size,
                )
                reports.append(report)
            else:
                result = forward_train(
                    mode, problem.x, problem.scale, problem.bias,
                    args.epsilon, args.momentum, save_stats=args.save_stats,
                    running=running, block_size=args.block_size,
                )
            if args.save_stats:
                saved_mean = result.saved_mean
                saved_inv_variance = result.saved_inv_variance
        else:
            estimated_mean = running.mean if running is not None else None
            estimated_variance = running.variance if running is not None else None
            if args.verify:
                _, report = verify_forward_infer(
                    mode, problem.x, problem.scale, problem.bias, args.epsilon,
                    estimated_mean, estimated_variance,
                    tolerance=tolerance, block_size=args.block_size,
                )
                reports.append(report)
            else:
                forward_infer(mode, problem.x, problem.scale, problem.bias,
                              args.epsilon, estimated_mean, estimated_variance,
                              block_size=args.block_size)
        fwd_time.update(time.perf_counter() - t0)

        # ── Backward ──
        if args.backward:
            t0 = time.perf_counter()
            if args.verify:
                _, report = verify_backward(
                    mode, problem.x, problem.dy, problem.scale, problem.bias,
                    args.epsilon, saved_mean, saved_inv_variance,
                    tolerance=tolerance, block_size=args.block_size,
                )
                reports.append(report)
            else:
                backward(mode, problem.x, problem.dy, problem.scale, args.epsilon,
                         saved_mean, saved_inv_variance, block_size=args.block_size)
            bwd_time.update(time.perf_counter() - t0)

        # ── Logging ──
        for report in reports:
            if not report.passed:
                failures += 1
            if not report.passed or it == args.iterations - 1:
                print(f"  [{it+1}/{args.iterations}] {report.summary()}")
            if writer is not None:
                for key, err in report.errors.items():
                    writer.add_scalar(f"Verify/{report.name}/{key}", err, it)

        if writer is not None:
            writer.add_scalar("Time/Forward", fwd_time.val, it)
            if args.backward:
                writer.add_scalar("Time/Backward", bwd_time.val, it)
            if running is not None:
                writer.add_scalar("Running/MeanAvg", float(running.mean.mean()), it)
                writer.add_scalar("Running/VarianceAvg", float(running.variance.mean()), it)

    if writer is not None:
        writer.close()

    print(f"Forward ({args.forward}): {fwd_time.avg * 1e3:.3f} ms avg "
          f"over {fwd_time.count} iterations")
    if args.backward:
        print(f"Backward: {bwd_time.avg * 1e3:.3f} ms avg "
              f"over {bwd_time.count} iterations")
    if running is not None:
        print(f"Running mean: avg={running.mean.mean():.5f}  "
              f"Running variance: avg={running.variance.mean():.5f}")
    return failures


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    print(f"\n{'='*60}")
    print(f"Batch norm {args.mode} | {args.forward}"
          f"{' + backward' if args.backward else ''}, "
          f"shape=({args.batch}, {args.channels}, {args.height}, {args.width}), "
          f"{args.layout}, {args.dtype}")
    print(f"epsilon={args.epsilon}  momentum={args.momentum}  "
          f"block_size={args.block_size}")
    print(f"{'='*60}")

    try:
        failures = run(args)
    except BatchNormConfigError as e:
        print(f"\nError: {e}")
        return 2

    if args.verify:
        if failures:
            print(f"\nVerification FAILED ({failures} comparisons out of tolerance)")
            return 1
        print("\nVerification PASSED")
    return 0


if __name__ == "__main__":
    sys.exit(main())
