"""
Host-emulated accelerator runtime.

Device memory lives in host RAM as byte arrays keyed by fake device
addresses. Every allocation is recorded, so the runtime doubles as the
allocation-tracking test double: `outstanding` must be zero once all
containers are released, and freeing an unknown address is reported as an
invalid-value error exactly like a double free on a real device.
"""
from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from .base import (
    AcceleratorRuntime,
    ERROR_INVALID_VALUE,
    ERROR_MEMORY_ALLOCATION,
    error_string,
)

_BASE_ADDRESS = 0x7F0000000000
_ALIGNMENT = 256


class _InjectedFailure(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class _InvalidAddress(Exception):
    pass


class SimulatedRuntime(AcceleratorRuntime):
    def __init__(self, memory_limit: Optional[int] = None):
        super().__init__("simulated")
        self.memory_limit = memory_limit
        self._mem: Dict[int, np.ndarray] = {}
        self._next = _BASE_ADDRESS
        self._pending: Dict[str, Tuple[int, str]] = {}
        self.malloc_calls = 0
        self.free_calls = 0
        self.htod_calls = 0
        self.dtoh_calls = 0
        self.resets = 0

    def initialize(self) -> bool:
        self.capabilities.available = True
        self.capabilities.device_count = 1
        self.capabilities.device_names = ["host-emulated device"]
        self.capabilities.has_gemm = True
        self._initialized = True
        return True

    def fail_next(self, op: str, code: int = ERROR_MEMORY_ALLOCATION, message: Optional[str] = None) -> None:
        """Make the next call of `op` (malloc, free, memcpy_htod, memcpy_dtoh, gemm) fail."""
        self._pending[op] = (code, message or error_string(code))

    def _maybe_fail(self, op: str) -> None:
        pending = self._pending.pop(op, None)
        if pending is not None:
            raise _InjectedFailure(*pending)

    def _translate_error(self, exc):
        if isinstance(exc, _InjectedFailure):
            return exc.code, exc.message
        if isinstance(exc, _InvalidAddress):
            return ERROR_INVALID_VALUE, f"{error_string(ERROR_INVALID_VALUE)}: {exc}"
        if isinstance(exc, MemoryError):
            return ERROR_MEMORY_ALLOCATION, error_string(ERROR_MEMORY_ALLOCATION)
        return None

    def _block(self, ptr: int) -> np.ndarray:
        block = self._mem.get(ptr)
        if block is None:
            raise _InvalidAddress(f"0x{ptr:x} is not a live device allocation")
        return block

    def _malloc(self, nbytes: int) -> int:
        self.malloc_calls += 1
        self._maybe_fail("malloc")
        if self.memory_limit is not None and self.bytes_in_use + nbytes > self.memory_limit:
            raise MemoryError(nbytes)
        ptr = self._next
        self._next += max(_ALIGNMENT, -(-nbytes // _ALIGNMENT) * _ALIGNMENT)
        # Device memory is not zeroed; mimic that with a recognisable fill.
        self._mem[ptr] = np.full(nbytes, 0xCD, dtype=np.uint8)
        return ptr

    def _free(self, ptr: int) -> None:
        self.free_calls += 1
        self._maybe_fail("free")
        if ptr == 0:
            return
        self._block(ptr)
        del self._mem[ptr]

    def _memcpy_htod(self, dst: int, src: np.ndarray, nbytes: int) -> None:
        self.htod_calls += 1
        self._maybe_fail("memcpy_htod")
        block = self._block(dst)
        raw = np.ascontiguousarray(src).reshape(-1).view(np.uint8)
        if nbytes > block.size or nbytes > raw.size:
            raise _InvalidAddress(f"copy of {nbytes} bytes overruns buffer")
        block[:nbytes] = raw[:nbytes]

    def _memcpy_dtoh(self, dst: np.ndarray, src: int, nbytes: int) -> None:
        self.dtoh_calls += 1
        self._maybe_fail("memcpy_dtoh")
        block = self._block(src)
        raw = dst.reshape(-1).view(np.uint8)
        if nbytes > block.size or nbytes > raw.size:
            raise _InvalidAddress(f"copy of {nbytes} bytes overruns buffer")
        raw[:nbytes] = block[:nbytes]

    def _as_colmajor(self, ptr: int, ld: int, nrows: int, ncols: int) -> np.ndarray:
        values = self._block(ptr).view(np.float64)
        if nrows == 0 or ncols == 0:
            return np.zeros((nrows, ncols))
        if ld < max(1, nrows) or ld * ncols > values.size:
            raise _InvalidAddress(f"leading dimension {ld} invalid for {nrows}x{ncols}")
        return values[: ld * ncols].reshape(ncols, ld).T[:nrows, :]

    def _gemm(self, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc) -> None:
        self._maybe_fail("gemm")
        if m == 0 or n == 0:
            return
        C = self._as_colmajor(c, ldc, m, n)
        A = self._as_colmajor(a, lda, m, k)
        B = self._as_colmajor(b, ldb, k, n)
        prod = alpha * (A @ B)
        if beta == 0.0:
            C[...] = prod
        else:
            C[...] = prod + beta * C

    def _device_reset(self) -> None:
        self.resets += 1
        self._mem.clear()
        self._pending.clear()

    # introspection

    def read(self, ptr: int, count: Optional[int] = None) -> np.ndarray:
        """Copy of a device allocation's contents as float64, for inspection."""
        values = self._block(ptr).view(np.float64)
        return values[:count].copy() if count is not None else values.copy()

    @property
    def outstanding(self) -> int:
        return len(self._mem)

    @property
    def bytes_in_use(self) -> int:
        return sum(block.size for block in self._mem.values())

    def stats(self) -> Dict[str, int]:
        return {
            "malloc_calls": self.malloc_calls,
            "free_calls": self.free_calls,
            "htod_calls": self.htod_calls,
            "dtoh_calls": self.dtoh_calls,
            "outstanding": self.outstanding,
            "bytes_in_use": self.bytes_in_use,
            "resets": self.resets,
        }
