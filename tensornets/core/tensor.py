"""Dense N-dimensional tensors backed by a flat row-major ``float64`` buffer."""

from __future__ import annotations

import itertools
import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import ShapeMismatchError
from .types import Array

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]

_IDS = itertools.count(1)


def _normalise_shape(shape: Iterable[int]) -> Shape:
    dims = tuple(shape)
    for dim in dims:
        if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)) or dim <= 0:
            raise ShapeMismatchError(f"Shape dimensions must be positive integers, got {dims}")
    return tuple(int(dim) for dim in dims)


def shape_size(shape: Sequence[int]) -> int:
    """Return the number of elements described by ``shape``."""

    return int(math.prod(shape))


def conv_window(
    out_dim: int, in_dim: int, offset: int, stride: int, padding: int
) -> Optional[Tuple[slice, slice]]:
    """Return the output/input slices touched by one kernel offset along one axis.

    For kernel offset ``offset`` the output position ``o`` reads input position
    ``o * stride + offset - padding``.  Positions falling outside ``[0, in_dim)``
    are skipped, which is equivalent to zero padding.  ``None`` is returned when
    the offset never lands inside the input.
    """

    shift = offset - padding
    first = (-shift + stride - 1) // stride if shift < 0 else 0
    last = min(out_dim - 1, (in_dim - 1 - shift) // stride)
    if first > last:
        return None
    start = first * stride + shift
    stop = last * stride + shift + 1
    return slice(first, last + 1), slice(start, stop, stride)


class Tensor:
    """Dense tensor with an explicit shape and a process-unique identity.

    The constructor copies ``data``.  :attr:`data` exposes the live flat buffer
    so optimisers and regularisers can update parameters in place; every other
    operation returns a new tensor unless documented otherwise.
    """

    __slots__ = ("_data", "_shape", "_id")

    def __init__(self, data: Iterable[float] | Array, shape: Optional[Sequence[int]] = None) -> None:
        buffer = np.array(data, dtype=np.float64).reshape(-1)
        if shape is None:
            shape = (buffer.size,)
        dims = _normalise_shape(shape)
        if shape_size(dims) != buffer.size:
            raise ShapeMismatchError(
                f"Data length {buffer.size} does not match shape {dims} ({shape_size(dims)} elements)"
            )
        self._data = buffer
        self._shape = dims
        self._id = next(_IDS)

    # ------------------------------------------------------------------
    # Construction helpers

    @classmethod
    def zeros(cls, shape: Sequence[int]) -> "Tensor":
        dims = _normalise_shape(shape)
        return cls(np.zeros(shape_size(dims)), dims)

    @classmethod
    def ones(cls, shape: Sequence[int]) -> "Tensor":
        dims = _normalise_shape(shape)
        return cls(np.ones(shape_size(dims)), dims)

    @classmethod
    def random(cls, shape: Sequence[int], rng: Optional[np.random.Generator] = None) -> "Tensor":
        """Uniform values in ``[-1, 1)``."""

        rng = rng if rng is not None else np.random.default_rng()
        dims = _normalise_shape(shape)
        return cls(rng.random(shape_size(dims)) * 2.0 - 1.0, dims)

    @classmethod
    def xavier(
        cls, input_size: int, output_size: int, rng: Optional[np.random.Generator] = None
    ) -> "Tensor":
        """Normal weights with standard deviation ``sqrt(2 / (in + out))``."""

        rng = rng if rng is not None else np.random.default_rng()
        scale = math.sqrt(2.0 / float(input_size + output_size))
        dims = _normalise_shape((input_size, output_size))
        return cls(rng.standard_normal(shape_size(dims)) * scale, dims)

    @classmethod
    def from_array(cls, array: Array) -> "Tensor":
        array = np.asarray(array, dtype=np.float64)
        return cls(array.reshape(-1), array.shape)

    # ------------------------------------------------------------------
    # Accessors

    @property
    def id(self) -> int:
        return self._id

    @property
    def data(self) -> Array:
        return self._data

    @data.setter
    def data(self, values: Iterable[float] | Array) -> None:
        self.set_data(values)

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def rank(self) -> int:
        return len(self._shape)

    def size(self) -> int:
        return int(self._data.size)

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"Tensor(id={self._id}, shape={list(self._shape)})"

    def to_array(self) -> Array:
        """Return a shaped copy of the data."""

        return self._data.reshape(self._shape).copy()

    def view(self) -> Array:
        """Return a shaped, read-only view of the live buffer."""

        view = self._data.reshape(self._shape)
        view.flags.writeable = False
        return view

    def clone(self) -> "Tensor":
        return Tensor(self._data, self._shape)

    def set_data(self, values: Iterable[float] | Array) -> None:
        if values is self._data:
            return
        buffer = np.array(values, dtype=np.float64).reshape(-1)
        if buffer.size != self._data.size:
            raise ShapeMismatchError(
                f"Data length {buffer.size} does not match tensor size {self._data.size}"
            )
        self._data = buffer

    def fill(self, value: float) -> None:
        self._data.fill(value)

    def index(self, *indices: int) -> int:
        if len(indices) != len(self._shape):
            raise ShapeMismatchError(
                f"number of indices ({len(indices)}) does not match number of dimensions ({len(self._shape)})"
            )
        flat = 0
        for axis, (idx, dim) in enumerate(zip(indices, self._shape)):
            if idx < 0 or idx >= dim:
                raise IndexError(
                    f"index out of range: indices[{axis}]={idx} out of shape[{axis}]={dim}"
                )
            flat = flat * dim + int(idx)
        return flat

    def get(self, *indices: int) -> float:
        return float(self._data[self.index(*indices)])

    def set(self, value: float, *indices: int) -> None:
        self._data[self.index(*indices)] = value

    # ------------------------------------------------------------------
    # Elementwise arithmetic

    def same_shape(self, other: "Tensor") -> bool:
        return self._shape == other.shape

    def _require_same_shape(self, other: "Tensor", op: str) -> None:
        if not self.same_shape(other):
            raise ShapeMismatchError(
                f"Shapes do not match for {op}: {list(self._shape)} vs {list(other.shape)}"
            )

    def add(self, other: "Tensor") -> "Tensor":
        self._require_same_shape(other, "addition")
        return Tensor(self._data + other.data, self._shape)

    def subtract(self, other: "Tensor") -> "Tensor":
        self._require_same_shape(other, "subtraction")
        return Tensor(self._data - other.data, self._shape)

    def multiply(self, other: "Tensor") -> "Tensor":
        self._require_same_shape(other, "multiplication")
        return Tensor(self._data * other.data, self._shape)

    def divide(self, other: "Tensor") -> "Tensor":
        self._require_same_shape(other, "division")
        return Tensor(self._data / other.data, self._shape)

    def add_scalar(self, scalar: float) -> "Tensor":
        return Tensor(self._data + scalar, self._shape)

    def multiply_scalar(self, scalar: float) -> "Tensor":
        return Tensor(self._data * scalar, self._shape)

    def add_row_vector(self, row: "Tensor") -> "Tensor":
        """Add a ``[1, F]`` (or ``[F]``) tensor to every row of an ``[N, F]`` tensor."""

        if self.rank != 2:
            raise ShapeMismatchError("add_row_vector requires a 2D tensor")
        features = self._shape[1]
        if row.size() != features or row.shape not in {(features,), (1, features)}:
            raise ShapeMismatchError(
                f"Row vector shape {list(row.shape)} incompatible with {list(self._shape)}"
            )
        result = self._data.reshape(self._shape) + row.data.reshape(1, features)
        return Tensor(result, self._shape)

    def sum(self) -> float:
        return float(self._data.sum())

    # ------------------------------------------------------------------
    # Linear algebra

    def dot(self, other: "Tensor") -> "Tensor":
        if self.rank != 2 or other.rank != 2:
            raise ShapeMismatchError("Dot product requires 2D tensors")
        if self._shape[1] != other.shape[0]:
            raise ShapeMismatchError(
                f"Shapes do not match for dot product: {list(self._shape)} vs {list(other.shape)}"
            )
        left = self._data.reshape(self._shape)
        right = other.data.reshape(other.shape)
        return Tensor(left @ right, (self._shape[0], other.shape[1]))

    def transpose(self) -> "Tensor":
        if self.rank != 2:
            raise ShapeMismatchError("Transpose requires a 2D tensor")
        rows, cols = self._shape
        return Tensor(self._data.reshape(rows, cols).T, (cols, rows))

    def conv2d(self, kernel: "Tensor", stride: int = 1, padding: int = 0) -> "Tensor":
        """2-D cross-correlation of a ``[B, C, H, W]`` input with ``[O, C, kH, kW]`` kernels."""

        if self.rank != 4 or kernel.rank != 4:
            raise ShapeMismatchError("Conv2D requires 4D tensors")
        if stride <= 0 or padding < 0:
            raise ShapeMismatchError(f"Invalid stride/padding: stride={stride}, padding={padding}")
        batch, channels, height, width = self._shape
        out_channels, kernel_channels, kernel_h, kernel_w = kernel.shape
        if kernel_channels != channels:
            raise ShapeMismatchError(
                f"Kernel expects {kernel_channels} input channels, input has {channels}"
            )
        out_h = (height + 2 * padding - kernel_h) // stride + 1
        out_w = (width + 2 * padding - kernel_w) // stride + 1
        if out_h <= 0 or out_w <= 0:
            raise ShapeMismatchError(
                f"Kernel {kernel_h}x{kernel_w} does not fit input {height}x{width} with padding {padding}"
            )

        source = self._data.reshape(self._shape)
        weights = kernel.data.reshape(kernel.shape)
        output = np.zeros((batch, out_channels, out_h, out_w))
        for kh in range(kernel_h):
            rows = conv_window(out_h, height, kh, stride, padding)
            if rows is None:
                continue
            for kw in range(kernel_w):
                cols = conv_window(out_w, width, kw, stride, padding)
                if cols is None:
                    continue
                patch = source[:, :, rows[1], cols[1]]
                output[:, :, rows[0], cols[0]] += np.einsum(
                    "bchw,oc->bohw", patch, weights[:, :, kh, kw]
                )
        return Tensor(output, output.shape)

    # ------------------------------------------------------------------
    # Structural operations

    def reshape(self, new_shape: Sequence[int]) -> "Tensor":
        """Return a copy with ``new_shape``; storage is never shared."""

        dims = _normalise_shape(new_shape)
        if shape_size(dims) != self.size():
            raise ShapeMismatchError(
                f"new shape {list(dims)} must have the same number of elements as {list(self._shape)}"
            )
        return Tensor(self._data, dims)

    def slice(self, index: int, axis: int = 0) -> "Tensor":
        if axis < 0 or axis >= self.rank:
            raise ShapeMismatchError("Invalid axis for slicing")
        if index < 0 or index >= self._shape[axis]:
            raise IndexError(f"slice index {index} out of range for axis {axis}")
        taken = np.take(self._data.reshape(self._shape), index, axis=axis)
        new_shape = self._shape[:axis] + self._shape[axis + 1 :]
        return Tensor(taken, new_shape or (1,))

    def row(self, row_index: int) -> Array:
        if self.rank != 2:
            raise ShapeMismatchError("Row operation only supports 2D tensors")
        if row_index < 0 or row_index >= self._shape[0]:
            raise IndexError("rowIndex out of bounds")
        width = self._shape[1]
        return self._data[row_index * width : (row_index + 1) * width].copy()

    def add_row(self, row_index: int, values: Iterable[float]) -> None:
        if self.rank != 2:
            raise ShapeMismatchError("AddRow operation only supports 2D tensors")
        if row_index < 0 or row_index >= self._shape[0]:
            raise IndexError("rowIndex out of bounds")
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        width = self._shape[1]
        if values.size != width:
            raise ShapeMismatchError("row length mismatch")
        self._data[row_index * width : (row_index + 1) * width] += values

    def split(self, sizes: Sequence[int]) -> List["Tensor"]:
        if any(size <= 0 for size in sizes):
            raise ShapeMismatchError(f"Split sizes must be positive, got {list(sizes)}")
        if sum(sizes) != self.size():
            raise ShapeMismatchError(
                f"Split sizes {list(sizes)} do not sum to tensor size {self.size()}"
            )
        parts: List[Tensor] = []
        offset = 0
        for size in sizes:
            parts.append(Tensor(self._data[offset : offset + size], (size,)))
            offset += size
        return parts

    def concatenate(self, others: Sequence["Tensor"]) -> "Tensor":
        return concatenate([self, *others])

    def sum_along_batch(self) -> "Tensor":
        if self.rank < 2:
            raise ShapeMismatchError("SumAlongBatch requires at least 2 dimensions")
        batch = self._shape[0]
        features = self.size() // batch
        return Tensor(self._data.reshape(batch, features).sum(axis=0), (1, features))

    def threshold(self, probability: float, rng: Optional[np.random.Generator] = None) -> "Tensor":
        """Return a same-shape 0/1 mask where each entry is 1 with ``probability``."""

        rng = rng if rng is not None else np.random.default_rng()
        mask = (rng.random(self.size()) < probability).astype(np.float64)
        return Tensor(mask, self._shape)

    # ------------------------------------------------------------------
    # Descriptive statistics

    def mean(self) -> float:
        return float(self._data.mean())

    def min(self) -> float:
        return float(self._data.min())

    def max(self) -> float:
        return float(self._data.max())

    def std_dev(self) -> float:
        return float(self._data.std())

    def stats(self, label: str) -> str:
        return (
            f"{label} - Shape: {list(self._shape)}, Mean: {self.mean():f}, Min: {self.min():f}, "
            f"Max: {self.max():f}, StdDev: {self.std_dev():f}"
        )

    def log_stats(self, label: str) -> None:
        logger.debug(self.stats(label))


def concatenate(tensors: Sequence[Tensor]) -> Tensor:
    """Join the flat buffers of ``tensors`` into a single 1-D tensor."""

    if not tensors:
        raise ShapeMismatchError("concatenate requires at least one tensor")
    joined = np.concatenate([tensor.data for tensor in tensors])
    return Tensor(joined, (joined.size,))


__all__ = ["Shape", "Tensor", "concatenate", "conv_window", "shape_size"]
