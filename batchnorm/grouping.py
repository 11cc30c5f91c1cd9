"""
Group-Indexing Strategies

A reduction group is the set of elements that share one mean/variance pair.

    per-activation:  group id = c*H*W + h*W + w, members vary over n   (size N)
    spatial:         group id = c, members vary over (h, w, n)         (size N*H*W)

Both strategies expose the same interface (group count, group size, the group
of a linear position, and a (groups x members) table of member offsets), so
the forward and backward engines are written once against it. Group ids index
every per-group array (scale, bias, saved and running statistics) and do not
depend on the buffer layout.
"""

from enum import Enum

import numpy as np

from .errors import BatchNormConfigError
from .tensor_view import TensorView


class BatchNormMode(str, Enum):
    PER_ACTIVATION = "per-activation"
    SPATIAL = "spatial"

    @classmethod
    def parse(cls, mode) -> "BatchNormMode":
        if isinstance(mode, cls):
            return mode
        try:
            return cls(str(mode).lower().replace("_", "-"))
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise BatchNormConfigError(
                f"Unknown batch-norm mode {mode!r}, expected one of: {choices}"
            ) from None


class GroupIndexing:
    """Maps the elements of a TensorView onto reduction groups."""

    mode = None

    def __init__(self, view: TensorView):
        self.view = view
        self._table = None

    @property
    def num_groups(self) -> int:
        raise NotImplementedError

    @property
    def group_size(self) -> int:
        return self.view.numel // self.num_groups

    def group_of(self, offset: int) -> int:
        raise NotImplementedError

    def member_offsets(self) -> np.ndarray:
        """Int64 (num_groups, group_size) table of member offsets.

        Within a group the batch index varies fastest, matching the
        reference iteration order (h, w outer; n inner).
        """
        if self._table is None:
            # (N, C, H, W) -> (C, H, W, N), then fold into rows of one group each
            self._table = self.view.offsets().transpose(1, 2, 3, 0).reshape(
                self.num_groups, self.group_size
            )
        return self._table

    def gather(self, buffer=None) -> np.ndarray:
        """Read the grouped elements as a float64 (groups x members) array."""
        if buffer is None:
            buffer = self.view.buffer
        return np.asarray(buffer)[self.member_offsets()].astype(np.float64)

    def scatter(self, values: np.ndarray, buffer: np.ndarray):
        """Write a (groups x members) array back through the member offsets."""
        buffer[self.member_offsets()] = values


class PerActivationGrouping(GroupIndexing):
    """One group per (c, h, w) coordinate, reduced over the batch."""

    mode = BatchNormMode.PER_ACTIVATION

    @property
    def num_groups(self) -> int:
        _, C, H, W = self.view.shape
        return C * H * W

    def group_of(self, offset: int) -> int:
        _, c, h, w = self.view.unravel(offset)
        _, _, H, W = self.view.shape
        return c * H * W + h * W + w


class SpatialGrouping(GroupIndexing):
    """One group per channel, reduced over batch and spatial extent."""

    mode = BatchNormMode.SPATIAL

    @property
    def num_groups(self) -> int:
        return self.view.shape[1]

    def group_of(self, offset: int) -> int:
        return self.view.unravel(offset)[1]


_STRATEGIES = {
    BatchNormMode.PER_ACTIVATION: PerActivationGrouping,
    BatchNormMode.SPATIAL: SpatialGrouping,
}


def make_grouping(mode, view: TensorView) -> GroupIndexing:
    return _STRATEGIES[BatchNormMode.parse(mode)](view)


def statistics_shape(mode, shape) -> tuple:
    """Shape of the per-group arrays (scale, bias, saved/running statistics)."""
    N, C, H, W = shape
    if BatchNormMode.parse(mode) is BatchNormMode.PER_ACTIVATION:
        return (C * H * W,)
    return (C,)
