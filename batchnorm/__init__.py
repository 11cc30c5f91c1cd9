from .errors import BatchNormConfigError
from .tensor_view import TensorView, layout_strides
from .grouping import (
    BatchNormMode,
    PerActivationGrouping,
    SpatialGrouping,
    make_grouping,
    statistics_shape,
)
from .statistics import StatisticsAccumulator, GroupStatistics
from .running_stats import RunningStatistics, RunningStatsUpdater
from .normalizer import normalize
from .forward import ForwardEngine, ForwardResult, forward_train, forward_infer
from .backward import BackwardEngine, BackwardResult, backward
from .layers import BatchNorm, BatchNormFunction

__all__ = [
    "BatchNormConfigError", "TensorView", "layout_strides",
    "BatchNormMode", "PerActivationGrouping", "SpatialGrouping",
    "make_grouping", "statistics_shape",
    "StatisticsAccumulator", "GroupStatistics",
    "RunningStatistics", "RunningStatsUpdater", "normalize",
    "ForwardEngine", "ForwardResult", "forward_train", "forward_infer",
    "BackwardEngine", "BackwardResult", "backward",
    "BatchNorm", "BatchNormFunction",
]
