"""
CUDA runtime backed by PyCUDA's driver API.

PyCUDA hands out DeviceAllocation objects; the runtime keeps them keyed by
their integer address so the Matrix container can hold a plain address and
still free through the owning allocation. No gemm kernel is provided.
"""
from __future__ import annotations

from typing import Dict, Optional

import numpy as np

from .. import config as _cfg
from .base import (
    AcceleratorRuntime,
    ERROR_INVALID_VALUE,
    ERROR_MEMORY_ALLOCATION,
    ERROR_UNKNOWN,
)
from ..utils.logging import get_logger

try:
    import pycuda.driver as cuda  # type: ignore
except Exception:
    cuda = None  # callers check is_pycuda_available()

logger = get_logger(__name__)


def is_pycuda_available() -> bool:
    if cuda is None:
        return False
    try:
        cuda.init()
        return cuda.Device.count() > 0
    except Exception:
        return False


class _UnknownAllocation(Exception):
    pass


class PycudaRuntime(AcceleratorRuntime):
    def __init__(self, device_index: Optional[int] = None):
        super().__init__("pycuda")
        self.device_index = device_index if device_index is not None else int(_cfg.get("DUALMAT_DEVICE_INDEX"))
        self._ctx = None
        self._allocs: Dict[int, "cuda.DeviceAllocation"] = {}

    def initialize(self) -> bool:
        if self._initialized:
            return self.capabilities.available
        if cuda is None:
            self.capabilities.available = False
            self.capabilities.error_msg = "pycuda not installed"
            logger.warning("[pycuda] pycuda not available")
            self._initialized = True
            return False
        try:
            cuda.init()
            count = cuda.Device.count()
            if count <= self.device_index:
                self.capabilities.available = False
                self.capabilities.error_msg = f"CUDA device {self.device_index} not present ({count} found)"
                self._initialized = True
                return False
            dev = cuda.Device(self.device_index)
            self._ctx = dev.make_context()
            major, minor = dev.compute_capability()
            self.capabilities.available = True
            self.capabilities.device_count = count
            self.capabilities.device_names.append(dev.name())
            self.capabilities.compute_capability = f"{major}.{minor}"
            self.capabilities.memory_gb = dev.total_memory() / (1024**3)
            logger.info(f"[pycuda] Initialized device {self.device_index} ({dev.name()})")
        except Exception as e:
            self.capabilities.available = False
            self.capabilities.error_msg = str(e)
            logger.error(f"[pycuda] Initialization failed: {e}")
        self._initialized = True
        return self.capabilities.available

    def _translate_error(self, exc):
        if isinstance(exc, _UnknownAllocation):
            return ERROR_INVALID_VALUE, str(exc)
        if cuda is None or not isinstance(exc, cuda.Error):
            return None
        if isinstance(exc, cuda.MemoryError):
            return ERROR_MEMORY_ALLOCATION, str(exc)
        if isinstance(exc, cuda.LogicError):
            return ERROR_INVALID_VALUE, str(exc)
        return ERROR_UNKNOWN, str(exc)

    def _malloc(self, nbytes: int) -> int:
        # cuMemAlloc rejects zero-byte requests.
        alloc = cuda.mem_alloc(max(nbytes, 1))
        ptr = int(alloc)
        self._allocs[ptr] = alloc
        return ptr

    def _free(self, ptr: int) -> None:
        if ptr == 0:
            return
        alloc = self._allocs.pop(ptr, None)
        if alloc is None:
            raise _UnknownAllocation(f"0x{ptr:x} is not a live device allocation")
        alloc.free()

    def _memcpy_htod(self, dst: int, src: np.ndarray, nbytes: int) -> None:
        raw = np.ascontiguousarray(src).reshape(-1).view(np.uint8)
        cuda.memcpy_htod(dst, raw[:nbytes])

    def _memcpy_dtoh(self, dst: np.ndarray, src: int, nbytes: int) -> None:
        raw = dst.reshape(-1).view(np.uint8)
        cuda.memcpy_dtoh(raw[:nbytes], src)

    def _synchronize(self) -> None:
        cuda.Context.synchronize()

    def _device_reset(self) -> None:
        self._allocs.clear()
        if self._ctx is not None:
            self._ctx.pop()
            self._ctx.detach()
            self._ctx = None
        self._initialized = False
        self.capabilities = type(self.capabilities)(self.name)
