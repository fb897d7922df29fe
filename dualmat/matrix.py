"""
Dual-location float64 matrix.

A `Matrix` owns up to two buffers holding the same rows x cols values: a
row-major host array and a device allocation obtained from an accelerator
runtime. It keeps their layouts straight during transfer and releases both
exactly once, whether the caller uses `with`, calls `destroy()`, or simply
drops the last reference.

Ownership is exclusive. Moving buffers between containers goes through
`take()` / `transfer_ownership()`; implicit copies (`copy.copy`,
`copy.deepcopy`, pickling) raise `CopyNotSupportedError`, and `duplicate()`
is the explicit deep copy.

The device buffer carries a layout tag recording which push variant wrote it.
Pulling with the other variant logs a warning, or raises
`LayoutMismatchError` when DUALMAT_STRICT_LAYOUT is on. A buffer written
by an external kernel is untagged until `mark_device_layout()` is called.
"""
from __future__ import annotations

import sys
from typing import Optional

import numpy as np

from . import config as _cfg
from .errors import AcceleratorFault, CopyNotSupportedError, LayoutMismatchError, check_accelerator
from .host import DTYPE, HostAllocator, default_host_allocator
from .layout import Layout, col_to_row_major, row_to_col_major
from .runtime.base import AcceleratorRuntime
from .utils.logging import get_logger

logger = get_logger(__name__)

FIELD_WIDTH = 7


class Matrix:
    def __init__(
        self,
        rows: int,
        cols: int,
        runtime: Optional[AcceleratorRuntime] = None,
        host_allocator: Optional[HostAllocator] = None,
    ):
        if rows < 0 or cols < 0:
            raise ValueError(f"matrix shape must be non-negative, got {rows}x{cols}")
        self._rows = int(rows)
        self._cols = int(cols)
        self._runtime = runtime
        self._host_allocator = host_allocator or default_host_allocator()
        self._host: Optional[np.ndarray] = None
        self._device_ptr: Optional[int] = None
        self._device_layout: Optional[Layout] = None
        self._device_generation: Optional[int] = None

    @classmethod
    def from_array(cls, values, runtime=None, host_allocator=None) -> "Matrix":
        """Build a matrix whose host buffer holds a copy of a 2-D array."""
        arr = np.asarray(values, dtype=DTYPE)
        if arr.ndim != 2:
            raise ValueError(f"expected a 2-D array, got {arr.ndim} dimension(s)")
        m = cls(arr.shape[0], arr.shape[1], runtime=runtime, host_allocator=host_allocator)
        m.load(arr)
        return m

    # shape & state

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def shape(self):
        return (self._rows, self._cols)

    @property
    def size(self) -> int:
        return self._rows * self._cols

    @property
    def nbytes(self) -> int:
        return self.size * np.dtype(DTYPE).itemsize

    @property
    def leading_dimension(self) -> int:
        """Stride for column-major kernels: the row count."""
        return self._rows

    @property
    def host(self) -> Optional[np.ndarray]:
        """Flat row-major host buffer, or None."""
        return self._host

    @property
    def device_ptr(self) -> Optional[int]:
        return self._device_ptr

    @property
    def device_layout(self) -> Optional[Layout]:
        return self._device_layout

    @property
    def has_host(self) -> bool:
        return self._host is not None

    @property
    def has_device(self) -> bool:
        return self._device_ptr is not None

    @property
    def runtime(self) -> AcceleratorRuntime:
        if self._runtime is None:
            from .runtime.registry import get_runtime

            self._runtime = get_runtime()
        return self._runtime

    @property
    def host_allocator(self) -> HostAllocator:
        return self._host_allocator

    # host & device memory

    def allocate_host(self) -> None:
        """Free, then (re)allocate the host buffer. Previous host data is lost."""
        self.release_host()
        self._host = self._host_allocator.allocate(self.size)
        logger.debug(f"allocated host buffer for {self._rows}x{self._cols}")

    def allocate_device(self) -> None:
        """Free, then (re)allocate the device buffer. Previous device data is lost."""
        self.release_device()
        rt = self.runtime
        ptr = rt.malloc(self.nbytes)
        check_accelerator(rt, "malloc")
        self._device_ptr = ptr
        self._device_generation = rt.generation
        self._device_layout = None
        logger.debug(f"allocated {self.nbytes} device bytes at 0x{ptr:x}")

    def release_host(self) -> None:
        if self._host is not None:
            buf, self._host = self._host, None
            self._host_allocator.release(buf)

    def release_device(self) -> None:
        if self._device_ptr is not None:
            ptr, self._device_ptr = self._device_ptr, None
            generation, self._device_generation = self._device_generation, None
            self._device_layout = None
            rt = self.runtime
            if generation != rt.generation:
                # A device reset already reclaimed it; freeing again would fault.
                logger.debug(f"dropped device buffer 0x{ptr:x} invalidated by a device reset")
                return
            rt.free(ptr)
            check_accelerator(rt, "free")
            logger.debug(f"freed device buffer at 0x{ptr:x}")

    def destroy(self) -> None:
        """Release both buffers. Safe to call any number of times."""
        self.release_host()
        self.release_device()

    close = destroy

    def __enter__(self) -> "Matrix":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    def __del__(self):
        if getattr(self, "_host_allocator", None) is None:
            return
        try:
            self.destroy()
        except AcceleratorFault as e:
            # Finalizers cannot propagate; the fault has already been logged.
            logger.error(f"release during finalization failed: {e}")

    # ownership

    def take(self, other: "Matrix") -> "Matrix":
        """Move `other`'s buffers, shape and collaborators into this matrix.

        Whatever this matrix owned is released first. `other` is left with no
        buffers and can be destroyed without touching what moved here.
        """
        if other is self:
            return self
        self.destroy()
        self._host, self._device_ptr = other._host, other._device_ptr
        self._device_layout = other._device_layout
        self._device_generation = other._device_generation
        self._rows, self._cols = other._rows, other._cols
        self._runtime = other._runtime
        self._host_allocator = other._host_allocator
        other._host = None
        other._device_ptr = None
        other._device_layout = None
        other._device_generation = None
        return self

    @classmethod
    def moved_from(cls, other: "Matrix") -> "Matrix":
        """Move-construct: a new matrix that takes over `other`'s buffers."""
        m = cls(other.rows, other.cols, runtime=other._runtime, host_allocator=other._host_allocator)
        return m.take(other)

    def duplicate(self) -> "Matrix":
        """Explicit deep copy of both buffers (device copied through the host)."""
        dup = Matrix(self._rows, self._cols, runtime=self._runtime, host_allocator=self._host_allocator)
        if self._host is not None:
            dup.allocate_host()
            dup._host[...] = self._host
        if self._device_ptr is not None:
            rt = self.runtime
            dup.allocate_device()
            stage = self._host_allocator.allocate(self.size)
            try:
                rt.memcpy_dtoh(stage, self._device_ptr, self.nbytes)
                check_accelerator(rt, "memcpy_dtoh")
                rt.memcpy_htod(dup._device_ptr, stage, self.nbytes)
                check_accelerator(rt, "memcpy_htod")
            finally:
                self._host_allocator.release(stage)
            dup._device_layout = self._device_layout
        return dup

    def __copy__(self):
        raise CopyNotSupportedError("Matrix cannot be copied implicitly; use duplicate() or take()")

    def __deepcopy__(self, memo):
        raise CopyNotSupportedError("Matrix cannot be copied implicitly; use duplicate() or take()")

    def __reduce_ex__(self, protocol):
        raise CopyNotSupportedError("Matrix owns device memory and cannot be pickled")

    # host <-> device transfers

    def push_to_device(self) -> None:
        """Copy the host buffer to the device as-is (row-major). Allocates the device buffer if needed."""
        if self._device_ptr is None:
            self.allocate_device()
        rt = self.runtime
        rt.memcpy_htod(self._device_ptr, self._host, self.nbytes)
        check_accelerator(rt, "memcpy_htod")
        self._device_layout = Layout.ROW_MAJOR

    def push_to_device_transposed(self) -> None:
        """Copy the host buffer to the device in column-major order. Allocates the device buffer if needed."""
        if self._device_ptr is None:
            self.allocate_device()
        rt = self.runtime
        staged = self._host_allocator.allocate(self.size)
        try:
            row_to_col_major(self._host, self._rows, self._cols, staged)
            rt.memcpy_htod(self._device_ptr, staged, self.nbytes)
            check_accelerator(rt, "memcpy_htod")
        finally:
            self._host_allocator.release(staged)
        self._device_layout = Layout.COL_MAJOR

    def pull_from_device(self) -> None:
        """Copy the device buffer back to the host as stored. Allocates the host buffer if needed."""
        self._check_layout(Layout.ROW_MAJOR, "pull_from_device")
        if self._host is None:
            self.allocate_host()
        rt = self.runtime
        rt.memcpy_dtoh(self._host, self._device_ptr, self.nbytes)
        check_accelerator(rt, "memcpy_dtoh")

    def pull_from_device_transposed(self) -> None:
        """Copy a column-major device buffer back and convert it to row-major.

        The host buffer is replaced: the column-ordered copy it briefly holds is
        freed once the converted buffer takes its place.
        """
        self._check_layout(Layout.COL_MAJOR, "pull_from_device_transposed")
        if self._host is None:
            self.allocate_host()
        rt = self.runtime
        rt.memcpy_dtoh(self._host, self._device_ptr, self.nbytes)
        check_accelerator(rt, "memcpy_dtoh")
        fixed = self._host_allocator.allocate(self.size)
        col_to_row_major(self._host, self._rows, self._cols, fixed)
        self._host_allocator.release(self._host)
        self._host = fixed

    def mark_device_layout(self, layout: Optional[Layout]) -> None:
        """Record how an external kernel left the device buffer."""
        self._device_layout = layout

    def _check_layout(self, expected: Layout, op: str) -> None:
        tag = self._device_layout
        if tag is None or tag is expected:
            return
        msg = f"{op} expects a {expected.value} device buffer but it was last written {tag.value}"
        if _cfg.get("DUALMAT_STRICT_LAYOUT"):
            raise LayoutMismatchError(msg)
        logger.warning(msg)

    # inspection

    def load(self, values) -> None:
        """Fill the host buffer (allocating it if absent) from rows x cols values."""
        arr = np.asarray(values, dtype=DTYPE)
        if arr.size != self.size:
            raise ValueError(f"expected {self.size} values for a {self._rows}x{self._cols} matrix, got {arr.size}")
        if self._host is None:
            self.allocate_host()
        self._host[...] = arr.reshape(-1)

    def at(self, i: int, j: int) -> float:
        """Host value at (i, j). Indices are not bounds-checked."""
        return float(self._host[i * self._cols + j])

    def to_numpy(self) -> Optional[np.ndarray]:
        """Host buffer viewed as a rows x cols array, or None."""
        if self._host is None:
            return None
        return self._host.reshape(self._rows, self._cols)

    def format_grid(self, precision: Optional[int] = None) -> str:
        if precision is None:
            precision = _cfg.get("DUALMAT_PRINT_PRECISION")
        fmt = f"{{:{FIELD_WIDTH}.{max(0, int(precision))}f}}"
        lines = []
        for i in range(self._rows):
            lines.append("".join(fmt.format(self.at(i, j)) for j in range(self._cols)) + "\n")
        return "".join(lines)

    def print(self, file=None) -> None:
        (file or sys.stdout).write(self.format_grid())

    def is_approximately_equal(self, other: "Matrix", tolerance: Optional[float] = None) -> bool:
        """True when shapes match and every host value is within `tolerance`.

        Compares every element; a 2x3 matrix never equals a 3x2 one even
        though both hold six values.
        """
        if self._rows != other._rows or self._cols != other._cols:
            return False
        if tolerance is None:
            tolerance = _cfg.get("DUALMAT_TOLERANCE")
        if self.size == 0:
            return True
        diff = np.abs(self._host - other._host)
        return bool(np.all(diff <= tolerance))

    def __repr__(self) -> str:
        dev = "none" if self._device_ptr is None else f"0x{self._device_ptr:x}"
        layout = self._device_layout.value if self._device_layout else "untagged"
        return (
            f"<Matrix {self._rows}x{self._cols} host={'yes' if self._host is not None else 'no'} "
            f"device={dev} ({layout})>"
        )


def transfer_ownership(src: Matrix, dst: Matrix) -> Matrix:
    """Move `src`'s buffers into `dst`; `src` ends up empty."""
    return dst.take(src)


__all__ = ["Matrix", "transfer_ownership", "FIELD_WIDTH"]
