"""
CUDA runtime backed by CuPy.

Device memory is managed through `cupy.cuda.runtime` directly (raw
cudaMalloc/cudaFree/cudaMemcpy) so the Matrix container owns plain device
addresses, not CuPy's pooled arrays. gemm wraps those addresses as unowned
Fortran-ordered CuPy arrays and lets cuBLAS do the multiply.
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .. import config as _cfg
from .base import AcceleratorRuntime, ERROR_UNKNOWN
from ..utils.logging import get_logger

try:
    import cupy as cp  # type: ignore
except Exception:
    cp = None  # callers check is_cupy_available()

logger = get_logger(__name__)


def is_cupy_available() -> bool:
    if cp is None:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False


class CupyRuntime(AcceleratorRuntime):
    def __init__(self, device_index: Optional[int] = None):
        super().__init__("cupy")
        self.device_index = device_index if device_index is not None else int(_cfg.get("DUALMAT_DEVICE_INDEX"))
        self._rt = None

    def initialize(self) -> bool:
        if self._initialized:
            return self.capabilities.available
        if cp is None:
            self.capabilities.available = False
            self.capabilities.error_msg = "cupy not installed"
            logger.warning("[cupy] cupy not available")
            self._initialized = True
            return False
        try:
            self._rt = cp.cuda.runtime
            count = self._rt.getDeviceCount()
            if count <= self.device_index:
                self.capabilities.available = False
                self.capabilities.error_msg = f"CUDA device {self.device_index} not present ({count} found)"
                self._initialized = True
                return False
            cp.cuda.Device(self.device_index).use()
            props = self._rt.getDeviceProperties(self.device_index)
            name = props.get("name", b"cuda")
            if isinstance(name, bytes):
                name = name.decode(errors="replace")
            self.capabilities.available = True
            self.capabilities.device_count = count
            self.capabilities.device_names.append(name)
            self.capabilities.compute_capability = f"{props.get('major', 0)}.{props.get('minor', 0)}"
            self.capabilities.memory_gb = props.get("totalGlobalMem", 0) / (1024**3)
            self.capabilities.has_gemm = True
            logger.info(
                f"[cupy] Initialized device {self.device_index} ({name}), "
                f"compute capability {self.capabilities.compute_capability}"
            )
        except Exception as e:
            self.capabilities.available = False
            self.capabilities.error_msg = str(e)
            logger.error(f"[cupy] Initialization failed: {e}")
        self._initialized = True
        return self.capabilities.available

    def _translate_error(self, exc):
        if cp is not None and isinstance(exc, cp.cuda.runtime.CUDARuntimeError):
            return int(getattr(exc, "status", ERROR_UNKNOWN)), str(exc)
        return None

    def _malloc(self, nbytes: int) -> int:
        return int(self._rt.malloc(nbytes))

    def _free(self, ptr: int) -> None:
        self._rt.free(ptr)

    def _memcpy_htod(self, dst: int, src: np.ndarray, nbytes: int) -> None:
        src = np.ascontiguousarray(src)
        self._rt.memcpy(dst, src.ctypes.data, nbytes, self._rt.memcpyHostToDevice)

    def _memcpy_dtoh(self, dst: np.ndarray, src: int, nbytes: int) -> None:
        self._rt.memcpy(dst.ctypes.data, src, nbytes, self._rt.memcpyDeviceToHost)

    def _wrap(self, ptr: int, ld: int, nrows: int, ncols: int):
        mem = cp.cuda.UnownedMemory(ptr, ld * ncols * 8, None, self.device_index)
        full = cp.ndarray((ld, ncols), dtype=cp.float64, memptr=cp.cuda.MemoryPointer(mem, 0), order="F")
        return full[:nrows, :]

    def _gemm(self, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc) -> None:
        if m == 0 or n == 0:
            return
        A = self._wrap(a, lda, m, k)
        B = self._wrap(b, ldb, k, n)
        C = self._wrap(c, ldc, m, n)
        prod = cp.matmul(A, B)
        if alpha != 1.0:
            prod *= alpha
        if beta == 0.0:
            C[...] = prod
        else:
            C[...] = prod + beta * C
        self._rt.deviceSynchronize()

    def _synchronize(self) -> None:
        self._rt.deviceSynchronize()

    def _device_reset(self) -> None:
        reset = getattr(self._rt, "deviceReset", None) if self._rt is not None else None
        if reset is not None:
            reset()
