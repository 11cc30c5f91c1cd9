"""
Batch-Norm Engine Tests

Tests:
1. Tensor views, layouts and group indexing
2. Two-pass statistics and blocked accumulation
3. Running statistics (Bessel correction, asymmetric blend, convergence)
4. Forward training: normalization identity, single-sample groups
5. Forward inference: estimates vs batch statistics
6. Backward: closed form, finite differences, two-phase protocol
7. Mode equivalence and layout independence
8. Configuration errors and non-finite inputs
"""

import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from batchnorm import (
    BackwardEngine,
    BatchNormConfigError,
    BatchNormMode,
    ForwardEngine,
    RunningStatistics,
    RunningStatsUpdater,
    StatisticsAccumulator,
    TensorView,
    backward,
    forward_infer,
    forward_train,
    make_grouping,
    normalize,
    statistics_shape,
)
from batchnorm.running_stats import bessel_adjust
from utils import random_problem

MODES = [BatchNormMode.PER_ACTIVATION, BatchNormMode.SPATIAL]


# ──────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────

@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def shape():
    return (6, 3, 4, 5)


def grouped(mode, view):
    """(groups, members) array of a view's elements."""
    return make_grouping(mode, view).gather()


# ──────────────────────────────────────────────
# Test 1: Views and Group Indexing
# ──────────────────────────────────────────────

def test_nchw_offsets_match_row_major(rng, shape):
    x = rng.standard_normal(shape)
    view = TensorView.from_array(x)
    assert view.layout == "NCHW"
    assert view.strides == (60, 20, 5, 1)
    np.testing.assert_array_equal(view.to_array(), x)
    assert view.buffer[view.offset(2, 1, 3, 4)] == x[2, 1, 3, 4]


def test_nhwc_view_round_trips_logical_array(rng, shape):
    x = rng.standard_normal(shape)
    view = TensorView.from_array(x, "NHWC")
    assert view.layout == "NHWC"
    assert view.strides == (60, 1, 15, 3)
    np.testing.assert_array_equal(view.to_array(), x)
    assert view.unravel(view.offset(5, 2, 1, 3)) == (5, 2, 1, 3)


def test_group_of_per_activation_and_spatial(shape):
    N, C, H, W = shape
    for layout in ("NCHW", "NHWC"):
        view = TensorView.from_array(np.zeros(shape), layout)
        per_act = make_grouping("per-activation", view)
        spatial = make_grouping("spatial", view)
        offset = view.offset(4, 2, 3, 1)
        assert per_act.group_of(offset) == 2 * H * W + 3 * W + 1
        assert spatial.group_of(offset) == 2


def test_group_tables_partition_the_buffer(shape):
    N, C, H, W = shape
    view = TensorView.from_array(np.zeros(shape), "NHWC")
    for mode, groups, size in ((BatchNormMode.PER_ACTIVATION, C * H * W, N),
                               (BatchNormMode.SPATIAL, C, N * H * W)):
        grouping = make_grouping(mode, view)
        table = grouping.member_offsets()
        assert table.shape == (groups, size)
        assert grouping.group_size == size
        assert statistics_shape(mode, shape) == (groups,)
        np.testing.assert_array_equal(np.sort(table.ravel()), np.arange(view.numel))
        for g in (0, groups - 1):
            assert all(grouping.group_of(o) == g for o in table[g])


def test_mode_parsing():
    assert BatchNormMode.parse("spatial") is BatchNormMode.SPATIAL
    assert BatchNormMode.parse("PER_ACTIVATION") is BatchNormMode.PER_ACTIVATION
    with pytest.raises(BatchNormConfigError):
        BatchNormMode.parse("instance")


# ──────────────────────────────────────────────
# Test 2: Statistics
# ──────────────────────────────────────────────

def test_two_pass_statistics_are_biased_population_values():
    stats = StatisticsAccumulator().accumulate([[1.0, 2.0, 3.0, 4.0],
                                                [2.0, 2.0, 2.0, 2.0]])
    np.testing.assert_allclose(stats.mean, [2.5, 2.0])
    np.testing.assert_allclose(stats.variance, [1.25, 0.0])
    assert stats.group_size == 4


def test_statistics_accumulate_in_float64_for_half_inputs():
    values = np.full((1, 4096), 1000.0, dtype=np.float16)
    values[0, ::2] = 1002.0
    stats = StatisticsAccumulator().accumulate(values)
    assert stats.mean.dtype == np.float64
    np.testing.assert_allclose(stats.mean, [1001.0])
    np.testing.assert_allclose(stats.variance, [1.0])


def test_stable_with_large_offset():
    values = 1e8 + np.array([[0.0, 1.0, 2.0, 3.0]])
    stats = StatisticsAccumulator().accumulate(values)
    np.testing.assert_allclose(stats.variance, [1.25], rtol=1e-9)


@pytest.mark.parametrize("block_size", [1, 3, 7, 64])
def test_blocked_accumulation_matches_unblocked(rng, block_size):
    values = rng.standard_normal((5, 50)) * 3.0 + 1.0
    plain = StatisticsAccumulator().accumulate(values)
    blocked = StatisticsAccumulator(block_size).accumulate(values)
    np.testing.assert_allclose(blocked.mean, plain.mean, rtol=1e-12)
    np.testing.assert_allclose(blocked.variance, plain.variance, rtol=1e-12)


# ──────────────────────────────────────────────
# Test 3: Running Statistics
# ──────────────────────────────────────────────

def test_bessel_adjust():
    assert bessel_adjust(2.0, 1) == 2.0
    assert bessel_adjust(1.0, 2) == 2.0
    np.testing.assert_allclose(bessel_adjust(np.array([3.0]), 4), [4.0])


def test_running_update_is_asymmetric():
    m = 0.1
    running = RunningStatistics(mean=np.array([1.0]), variance=np.array([4.0]))
    stats = StatisticsAccumulator().accumulate([[0.0, 2.0]])  # mean 1, var 1

    RunningStatsUpdater(m).update(running, stats)

    # mean weights the new estimate by m, variance weights the old one by m
    np.testing.assert_allclose(running.mean, [1.0 * (1 - m) + 1.0 * m])
    np.testing.assert_allclose(running.variance, [m * 4.0 + (1 - m) * 2.0])


def test_running_statistics_are_updated_in_place(rng, shape):
    running = RunningStatistics.create("spatial", shape)
    mean_buffer, var_buffer = running.mean, running.variance
    x = rng.standard_normal(shape) + 3.0
    forward_train("spatial", x, np.ones(3), np.zeros(3), momentum=0.5, running=running)
    assert running.mean is mean_buffer and running.variance is var_buffer
    np.testing.assert_allclose(running.mean, 0.5 * x.mean(axis=(0, 2, 3)))
    np.testing.assert_allclose(running.variance, 0.5 + 0.5 * x.var(axis=(0, 2, 3), ddof=1))


def test_running_statistics_converge(rng):
    shape = (32, 2, 4, 4)
    offsets = np.array([1.0, -3.0])
    running = RunningStatistics.create("spatial", shape)
    for _ in range(300):
        problem = random_problem(shape, "spatial", "fp64", rng=rng, offsets=offsets)
        forward_train("spatial", problem.x, problem.scale, problem.bias,
                      momentum=0.1, running=running)
    # samples are offset + 1.5 * N(0, 1)
    np.testing.assert_allclose(running.mean, offsets, atol=0.1)
    np.testing.assert_allclose(running.variance, [2.25, 2.25], atol=0.6)


def test_infer_and_backward_leave_running_statistics_alone(rng, shape):
    running = RunningStatistics.create("spatial", shape)
    x = rng.standard_normal(shape)
    forward_train("spatial", x, np.ones(3), np.zeros(3), running=running)
    before = (running.mean.copy(), running.variance.copy())

    forward_infer("spatial", x, np.ones(3), np.zeros(3),
                  estimated_mean=running.mean, estimated_variance=running.variance)
    forward_infer("spatial", x, np.ones(3), np.zeros(3))
    backward("spatial", x, rng.standard_normal(shape), np.ones(3))

    np.testing.assert_array_equal(running.mean, before[0])
    np.testing.assert_array_equal(running.variance, before[1])


# ──────────────────────────────────────────────
# Test 4: Forward Training
# ──────────────────────────────────────────────

@pytest.mark.parametrize("mode", MODES)
def test_normalization_identity(rng, shape, mode):
    x = rng.standard_normal(shape) * 4.0 + 7.0
    groups = statistics_shape(mode, shape)
    result = forward_train(mode, x, np.ones(groups), np.zeros(groups))

    y = grouped(mode, result.y)
    np.testing.assert_allclose(y.mean(axis=1), 0.0, atol=1e-10)
    np.testing.assert_allclose(y.var(axis=1), 1.0, atol=1e-4)


@pytest.mark.parametrize("mode", MODES)
def test_scale_and_bias_are_applied_per_group(rng, shape, mode):
    x = TensorView.from_array(rng.standard_normal(shape))
    groups = statistics_shape(mode, shape)
    scale = rng.uniform(0.5, 2.0, size=groups)
    bias = rng.uniform(-1.0, 1.0, size=groups)

    result = forward_train(mode, x, scale, bias, epsilon=1e-5, save_stats=True)

    values = grouped(mode, x)
    expected = (scale[:, None] * (values - result.saved_mean[:, None])
                * result.saved_inv_variance[:, None] + bias[:, None])
    np.testing.assert_allclose(grouped(mode, result.y), expected, rtol=1e-12)
    np.testing.assert_allclose(result.saved_mean, values.mean(axis=1))
    np.testing.assert_allclose(result.saved_inv_variance,
                               1.0 / np.sqrt(values.var(axis=1) + 1e-5))


def test_saved_statistics_only_when_requested(rng, shape):
    result = forward_train("spatial", rng.standard_normal(shape), np.ones(3), np.zeros(3))
    assert result.saved_mean is None and result.saved_inv_variance is None


def test_single_sample_group():
    eps = 1e-5
    shape = (1, 2, 2, 2)
    x = np.arange(8, dtype=np.float64).reshape(shape)
    running = RunningStatistics.create("per-activation", shape)
    bias = np.linspace(-1.0, 1.0, 8)

    result = forward_train("per-activation", x, np.full(8, 3.0), bias,
                           epsilon=eps, momentum=0.1, save_stats=True, running=running)

    np.testing.assert_allclose(result.saved_inv_variance, 1.0 / np.sqrt(eps))
    np.testing.assert_allclose(result.y.to_array().reshape(-1), bias)
    # uncorrected path: 0.1 * 1 + 0.9 * 0
    assert np.all(np.isfinite(running.variance))
    np.testing.assert_allclose(running.variance, 0.1)
    np.testing.assert_allclose(running.mean, 0.1 * np.arange(8))


def test_single_sample_group_spatial():
    eps = 1e-5
    shape = (1, 3, 1, 1)
    x = np.array([2.0, -1.0, 5.0]).reshape(shape)
    running = RunningStatistics.create("spatial", shape)
    assert running.mean.shape == (3,)
    bias = np.array([0.5, -0.5, 1.0])

    result = forward_train("spatial", x, np.full(3, 2.0), bias,
                           epsilon=eps, momentum=0.1, save_stats=True, running=running)

    np.testing.assert_allclose(result.saved_mean, [2.0, -1.0, 5.0])
    np.testing.assert_allclose(result.saved_inv_variance, 1.0 / np.sqrt(eps))
    np.testing.assert_allclose(result.y.to_array().reshape(-1), bias)
    np.testing.assert_allclose(running.variance, 0.1)
    np.testing.assert_allclose(running.mean, [0.2, -0.1, 0.5])


def test_normalize_broadcasts_group_statistics():
    values = np.array([[1.0, 3.0], [10.0, 20.0]])
    y = normalize(values, np.array([2.0, 15.0]), np.array([1.0, 0.2]),
                  np.array([2.0, 1.0]), np.array([0.0, 5.0]))
    np.testing.assert_allclose(y, [[-2.0, 2.0], [4.0, 6.0]])


# ──────────────────────────────────────────────
# Test 5: Forward Inference
# ──────────────────────────────────────────────

@pytest.mark.parametrize("mode", MODES)
def test_inference_uses_frozen_estimates(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    running = RunningStatistics.create(mode, shape)
    for _ in range(5):
        forward_train(mode, rng.standard_normal(shape) + 2.0, np.ones(groups),
                      np.zeros(groups), momentum=0.3, running=running)

    x = TensorView.from_array(rng.standard_normal(shape))
    scale = rng.uniform(0.5, 1.5, size=groups)
    bias = rng.uniform(-0.5, 0.5, size=groups)
    y = forward_infer(mode, x, scale, bias, 1e-5, running.mean, running.variance)

    expected = (scale[:, None] * (grouped(mode, x) - running.mean[:, None])
                / np.sqrt(running.variance[:, None] + 1e-5) + bias[:, None])
    np.testing.assert_allclose(grouped(mode, y), expected, rtol=1e-12)


@pytest.mark.parametrize("mode", MODES)
def test_inference_without_estimates_matches_training(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    x = rng.standard_normal(shape)
    scale, bias = rng.uniform(size=groups), rng.uniform(size=groups)
    trained = forward_train(mode, x, scale, bias).y
    inferred = forward_infer(mode, x, scale, bias)
    np.testing.assert_array_equal(inferred.to_array(), trained.to_array())


# ──────────────────────────────────────────────
# Test 6: Backward
# ──────────────────────────────────────────────

def _loss(x, dy, scale, eps):
    y = forward_train("per-activation", x, scale, np.zeros_like(scale), epsilon=eps).y
    return float(np.sum(y.to_array() * dy))


def test_backward_matches_finite_differences():
    eps = 1e-5
    x = np.array([1.0, 2.0, 3.0, 4.0]).reshape(4, 1, 1, 1)
    dy = np.array([0.3, -1.2, 0.7, 2.0]).reshape(4, 1, 1, 1)
    scale = np.array([1.0])

    result = backward("per-activation", x, dy, scale, epsilon=eps)

    h = 1e-6
    numeric = np.zeros(4)
    for i in range(4):
        step = np.zeros(4)
        step[i] = h
        step = step.reshape(x.shape)
        numeric[i] = (_loss(x + step, dy, scale, eps) - _loss(x - step, dy, scale, eps)) / (2 * h)
    np.testing.assert_allclose(result.dx.to_array().reshape(-1), numeric, atol=1e-4)

    numeric_dscale = (_loss(x, dy, scale + h, eps) - _loss(x, dy, scale - h, eps)) / (2 * h)
    np.testing.assert_allclose(result.dscale, [numeric_dscale], atol=1e-4)
    np.testing.assert_allclose(result.dbias, [dy.sum()])


@pytest.mark.parametrize("mode", MODES)
def test_dscale_and_dbias_are_raw_sums(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    x = TensorView.from_array(rng.standard_normal(shape))
    dy = TensorView.from_array(rng.standard_normal(shape))
    fwd = forward_train(mode, x, np.ones(groups), np.zeros(groups), save_stats=True)

    result = backward(mode, x, dy, rng.uniform(0.5, 1.5, size=groups), 1e-5,
                      fwd.saved_mean, fwd.saved_inv_variance)

    xhat = grouped(mode, fwd.y)
    np.testing.assert_allclose(result.dbias, grouped(mode, dy).sum(axis=1), rtol=1e-12)
    np.testing.assert_allclose(result.dscale, (xhat * grouped(mode, dy)).sum(axis=1),
                               rtol=1e-10, atol=1e-12)


@pytest.mark.parametrize("mode", MODES)
def test_input_gradient_is_orthogonal_to_mean_and_xhat(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    x = TensorView.from_array(rng.standard_normal(shape) * 2.0 + 1.0)
    # epsilon = 0 makes sum(xhat^2) == M exactly
    fwd = forward_train(mode, x, np.ones(groups), np.zeros(groups), epsilon=0.0)
    result = backward(mode, x, rng.standard_normal(shape),
                      rng.uniform(0.5, 1.5, size=groups), epsilon=0.0)

    dx = grouped(mode, result.dx)
    xhat = grouped(mode, fwd.y)
    np.testing.assert_allclose(dx.sum(axis=1), 0.0, atol=1e-10)
    np.testing.assert_allclose((dx * xhat).sum(axis=1), 0.0, atol=1e-9)


@pytest.mark.parametrize("mode", MODES)
def test_saved_and_recomputed_statistics_agree(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    problem = random_problem(shape, mode, "fp32", rng=rng)
    fwd = forward_train(mode, problem.x, problem.scale, problem.bias, save_stats=True)

    saved = backward(mode, problem.x, problem.dy, problem.scale, 1e-5,
                     fwd.saved_mean, fwd.saved_inv_variance)
    recomputed = backward(mode, problem.x, problem.dy, problem.scale, 1e-5)

    np.testing.assert_allclose(saved.dx.to_array(), recomputed.dx.to_array(), rtol=1e-12)
    np.testing.assert_allclose(saved.dscale, recomputed.dscale, rtol=1e-12)
    assert saved.dscale.shape == (groups,)


def test_two_phase_protocol_matches_run(rng, shape):
    engine = BackwardEngine("spatial", epsilon=1e-5)
    x = TensorView.from_array(rng.standard_normal(shape))
    dy = TensorView.from_array(rng.standard_normal(shape))
    scale = rng.uniform(0.5, 1.5, size=3)

    x_values, dy_values = grouped("spatial", x), grouped("spatial", dy)
    stats = StatisticsAccumulator().accumulate(x_values)
    acc = engine.accumulate(x_values, dy_values, scale, stats.mean,
                            stats.inv_variance(1e-5))
    assert acc.xhat.shape == x_values.shape
    np.testing.assert_allclose(acc.scaled_dy_sum, scale * acc.dbias,
                               rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(acc.scaled_dy_xhat_sum, scale * acc.dscale,
                               rtol=1e-12, atol=1e-12)

    dx = engine.input_gradient(acc, dy_values, scale)
    np.testing.assert_allclose(dx, grouped("spatial", engine.run(x, dy, scale).dx),
                               rtol=1e-12)


def test_frozen_backward_is_scaled_dy(rng, shape):
    engine = BackwardEngine("spatial", epsilon=1e-5)
    dy = rng.standard_normal(shape)
    scale = np.array([1.0, 2.0, 0.5])
    variance = np.array([1.0, 4.0, 0.25])
    result = engine.run_frozen(rng.standard_normal(shape), dy, scale,
                               np.zeros(3), variance)
    factor = scale / np.sqrt(variance + 1e-5)
    np.testing.assert_allclose(result.dx.to_array(), dy * factor[None, :, None, None],
                               rtol=1e-12)
    np.testing.assert_allclose(result.dbias, dy.sum(axis=(0, 2, 3)))


# ──────────────────────────────────────────────
# Test 7: Mode Equivalence and Layouts
# ──────────────────────────────────────────────

def test_modes_coincide_for_single_point_images(rng):
    shape = (6, 1, 1, 1)
    x = rng.standard_normal(shape)
    dy = rng.standard_normal(shape)
    results = {}
    for mode in MODES:
        running = RunningStatistics.create(mode, shape)
        fwd = forward_train(mode, x, [1.3], [0.2], save_stats=True, running=running)
        bwd = backward(mode, x, dy, [1.3], 1e-5, fwd.saved_mean, fwd.saved_inv_variance)
        results[mode] = (fwd.y.to_array(), fwd.saved_mean, fwd.saved_inv_variance,
                         running.mean, running.variance, bwd.dx.to_array(),
                         bwd.dscale, bwd.dbias)

    for a, b in zip(*results.values()):
        np.testing.assert_array_equal(a, b)


@pytest.mark.parametrize("mode", MODES)
def test_layout_independence(rng, shape, mode):
    groups = statistics_shape(mode, shape)
    x, dy = rng.standard_normal(shape), rng.standard_normal(shape)
    scale, bias = rng.uniform(size=groups), rng.uniform(size=groups)

    outputs = {}
    for layout in ("NCHW", "NHWC"):
        xv = TensorView.from_array(x, layout)
        dyv = TensorView.from_array(dy, layout)
        fwd = forward_train(mode, xv, scale, bias, save_stats=True)
        bwd = backward(mode, xv, dyv, scale)
        assert fwd.y.strides == xv.strides and bwd.dx.strides == xv.strides
        outputs[layout] = (fwd.y.to_array(), fwd.saved_mean, bwd.dx.to_array(), bwd.dscale)

    for a, b in zip(outputs["NCHW"], outputs["NHWC"]):
        np.testing.assert_allclose(a, b, rtol=1e-12, atol=1e-14)


def test_engine_objects_are_reusable(rng, shape):
    engine = ForwardEngine("spatial", epsilon=1e-3, momentum=0.5, block_size=4)
    assert engine.momentum == 0.5
    x = rng.standard_normal(shape)
    first = engine.train(x, np.ones(3), np.zeros(3)).y.to_array()
    second = engine.train(x, np.ones(3), np.zeros(3)).y.to_array()
    np.testing.assert_array_equal(first, second)


# ──────────────────────────────────────────────
# Test 8: Errors and Non-Finite Inputs
# ──────────────────────────────────────────────

def test_zero_sized_batch_is_rejected():
    with pytest.raises(BatchNormConfigError):
        TensorView.from_array(np.zeros((0, 3, 2, 2)))
    with pytest.raises(BatchNormConfigError):
        forward_train("spatial", np.zeros((2, 3, 0, 2)), np.ones(3), np.zeros(3))


def test_buffer_too_small_is_rejected():
    with pytest.raises(BatchNormConfigError):
        TensorView(np.zeros(10), (2, 3, 2, 2))


def test_aliasing_strides_are_rejected():
    # channel stride 0 would put both channels on the same elements
    with pytest.raises(BatchNormConfigError):
        TensorView(np.arange(8.0), (2, 2, 2, 2), strides=(4, 0, 2, 1))
    with pytest.raises(BatchNormConfigError):
        TensorView(np.arange(16.0), (2, 2, 2, 2), strides=(4, 2, 2, 1))
    # a zero stride over an extent of one is harmless
    view = TensorView(np.arange(8.0), (2, 1, 2, 2), strides=(4, 0, 2, 1))
    assert view.numel == 8


@pytest.mark.parametrize("kwargs", [
    {"scale": np.ones(4)},
    {"bias": np.ones(2)},
    {"momentum": 1.5},
    {"epsilon": -1.0},
    {"mode": "group"},
])
def test_configuration_errors_leave_running_statistics_untouched(rng, shape, kwargs):
    call = {"mode": "spatial", "x": rng.standard_normal(shape), "scale": np.ones(3),
            "bias": np.zeros(3), "epsilon": 1e-5, "momentum": 0.1}
    call.update(kwargs)
    running = RunningStatistics.create("spatial", shape)
    with pytest.raises(BatchNormConfigError):
        forward_train(running=running, **call)
    np.testing.assert_array_equal(running.mean, 0.0)
    np.testing.assert_array_equal(running.variance, 1.0)


def test_running_statistics_of_wrong_size(rng, shape):
    running = RunningStatistics.create("per-activation", shape)
    with pytest.raises(BatchNormConfigError):
        forward_train("spatial", rng.standard_normal(shape), np.ones(3), np.zeros(3),
                      running=running)


def test_integer_running_statistics_are_rejected():
    x = np.arange(4, dtype=np.float64).reshape(4, 1, 1, 1)
    running = RunningStatistics(np.zeros(1, dtype=np.int64), np.ones(1, dtype=np.int64))
    with pytest.raises(BatchNormConfigError):
        forward_train("spatial", x, [1.0], [0.0], momentum=0.1, running=running)
    np.testing.assert_array_equal(running.mean, [0])
    np.testing.assert_array_equal(running.variance, [1])

    running = RunningStatistics(np.zeros(1), np.ones(1))
    forward_train("spatial", x, [1.0], [0.0], momentum=0.1, running=running)
    np.testing.assert_allclose(running.mean, [0.15])


def test_statistics_must_come_in_pairs(rng, shape):
    x = rng.standard_normal(shape)
    with pytest.raises(BatchNormConfigError):
        forward_infer("spatial", x, np.ones(3), np.zeros(3), estimated_mean=np.zeros(3))
    with pytest.raises(BatchNormConfigError):
        backward("spatial", x, x, np.ones(3), saved_inv_variance=np.ones(3))


def test_dy_shape_must_match(rng, shape):
    with pytest.raises(BatchNormConfigError):
        backward("spatial", rng.standard_normal(shape),
                 rng.standard_normal((6, 3, 4, 4)), np.ones(3))


def test_non_finite_inputs_propagate(rng, shape):
    x = rng.standard_normal(shape)
    x[0, 0, 0, 0] = np.nan
    y = forward_train("spatial", x, np.ones(3), np.zeros(3)).y.to_array()
    assert np.all(np.isnan(y[:, 0]))
    assert np.all(np.isfinite(y[:, 1:]))

    x[0, 1, 0, 0] = np.inf
    y = forward_train("spatial", x, np.ones(3), np.zeros(3)).y.to_array()
    assert not np.any(np.isfinite(y[:, 1]))
    assert np.all(np.isfinite(y[:, 2]))


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
