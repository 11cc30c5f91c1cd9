"""
Strided Tensor View

A flat element buffer addressed through a logical (N, C, H, W) shape and four
element strides. Element (n, c, h, w) lives at

    n * stride_n + c * stride_c + h * stride_h + w * stride_w

Every engine operation goes through these offsets, so NCHW and NHWC buffers
(or any other dense stride order) are handled by the same code.
"""

from typing import Optional, Tuple

import numpy as np

from .errors import BatchNormConfigError

LAYOUTS = ("NCHW", "NHWC")


def layout_strides(shape: Tuple[int, int, int, int], layout: str = "NCHW"):
    """Element strides (n, c, h, w) of a densely packed layout."""
    N, C, H, W = shape
    if layout == "NCHW":
        return (C * H * W, H * W, W, 1)
    if layout == "NHWC":
        return (H * W * C, 1, W * C, C)
    raise BatchNormConfigError(f"Unknown layout {layout!r}, expected one of {LAYOUTS}")


class TensorView:
    """A 1-D buffer viewed as an (N, C, H, W) tensor through explicit strides.

    Args:
        buffer (np.ndarray): Flat element storage.
        shape (tuple): Logical (N, C, H, W) extents.
        strides (tuple, optional): Element strides for (n, c, h, w).
            Defaults to densely packed NCHW.
    """

    def __init__(self, buffer, shape, strides=None):
        buffer = np.asarray(buffer)
        if buffer.ndim != 1:
            raise BatchNormConfigError(
                f"TensorView expects a flat buffer, got {buffer.ndim}-D"
            )
        shape = tuple(int(s) for s in shape)
        if len(shape) != 4:
            raise BatchNormConfigError(f"Expected an (N, C, H, W) shape, got {shape}")
        if min(shape) < 1:
            raise BatchNormConfigError(f"All dimensions must be >= 1, got {shape}")
        if strides is None:
            strides = layout_strides(shape)
        strides = tuple(int(s) for s in strides)
        if len(strides) != 4 or min(strides) < 0:
            raise BatchNormConfigError(f"Invalid strides {strides} for shape {shape}")

        last = sum((extent - 1) * stride for extent, stride in zip(shape, strides))
        if last >= buffer.shape[0]:
            raise BatchNormConfigError(
                f"Buffer of {buffer.shape[0]} elements is too small for shape "
                f"{shape} with strides {strides}"
            )

        self.buffer = buffer
        self.shape = shape
        self.strides = strides

        # distinct elements must map to distinct offsets
        if np.unique(self.offsets()).size != self.numel:
            raise BatchNormConfigError(
                f"Strides {strides} alias elements of shape {shape}"
            )

    @classmethod
    def from_array(cls, array, layout: str = "NCHW", dtype=None) -> "TensorView":
        """Pack a logical (N, C, H, W) array into a flat buffer of ``layout``."""
        array = np.asarray(array, dtype=dtype)
        if array.ndim != 4:
            raise BatchNormConfigError(
                f"Expected a 4-D (N, C, H, W) array, got shape {array.shape}"
            )
        strides = layout_strides(array.shape, layout)
        if layout == "NHWC":
            physical = array.transpose(0, 2, 3, 1)
        else:
            physical = array
        return cls(np.ascontiguousarray(physical).reshape(-1), array.shape, strides)

    # ── Properties ──

    @property
    def dtype(self):
        return self.buffer.dtype

    @property
    def numel(self) -> int:
        N, C, H, W = self.shape
        return N * C * H * W

    @property
    def layout(self) -> Optional[str]:
        """Name of the dense layout these strides describe, if any."""
        for name in LAYOUTS:
            if self.strides == layout_strides(self.shape, name):
                return name
        return None

    # ── Addressing ──

    def offsets(self) -> np.ndarray:
        """Linear offsets of every element, as an int64 (N, C, H, W) array."""
        N, C, H, W = self.shape
        sn, sc, sh, sw = self.strides
        return (
            np.arange(N, dtype=np.int64)[:, None, None, None] * sn
            + np.arange(C, dtype=np.int64)[None, :, None, None] * sc
            + np.arange(H, dtype=np.int64)[None, None, :, None] * sh
            + np.arange(W, dtype=np.int64)[None, None, None, :] * sw
        )

    def offset(self, n: int, c: int, h: int, w: int) -> int:
        sn, sc, sh, sw = self.strides
        return n * sn + c * sc + h * sh + w * sw

    def unravel(self, offset: int) -> Tuple[int, int, int, int]:
        """Recover (n, c, h, w) from a linear offset of a dense layout."""
        coords = [0, 0, 0, 0]
        remainder = int(offset)
        # Largest stride first; a dimension of extent 1 never owns the offset.
        order = sorted(range(4), key=lambda d: self.strides[d], reverse=True)
        for dim in order:
            if self.shape[dim] == 1 or self.strides[dim] == 0:
                continue
            coords[dim], remainder = divmod(remainder, self.strides[dim])
        if remainder != 0 or any(c >= s for c, s in zip(coords, self.shape)):
            raise BatchNormConfigError(f"Offset {offset} is not an element of this view")
        return tuple(coords)

    # ── Conversion ──

    def to_array(self) -> np.ndarray:
        """Logical (N, C, H, W) copy of the viewed elements."""
        return self.buffer[self.offsets()]

    def empty_like(self, dtype=np.float64) -> "TensorView":
        """Zero-filled view with the same shape and strides."""
        return TensorView(np.zeros(self.buffer.shape[0], dtype=dtype),
                          self.shape, self.strides)

    def __repr__(self) -> str:
        layout = self.layout or f"strides={self.strides}"
        return f"TensorView(shape={self.shape}, {layout}, dtype={self.dtype})"


def as_view(x, name: str = "x") -> TensorView:
    """Accept a TensorView or a 4-D (N, C, H, W) array."""
    if isinstance(x, TensorView):
        return x
    if x is None:
        raise BatchNormConfigError(f"{name} is required")
    array = np.asarray(x)
    if array.ndim != 4:
        raise BatchNormConfigError(
            f"{name} must be a TensorView or a 4-D array, got shape {array.shape}"
        )
    return TensorView.from_array(array)
