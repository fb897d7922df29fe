"""
Base Accelerator Runtime Interface for dualmat.

Defines the device-memory surface the Matrix container consumes: allocate,
free, synchronous host<->device copies, a CUDA-style "last error" slot and a
device reset. Concrete runtimes implement the underscored primitives; the
public methods here capture runtime exceptions into the last-error slot so
callers follow a single "call, then check_accelerator()" discipline.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Status codes follow cudaError_t numbering.
SUCCESS = 0
ERROR_INVALID_VALUE = 1
ERROR_MEMORY_ALLOCATION = 2
ERROR_INITIALIZATION = 3
ERROR_NOT_SUPPORTED = 801
ERROR_UNKNOWN = 999

ERROR_STRINGS = {
    SUCCESS: "no error",
    ERROR_INVALID_VALUE: "invalid argument",
    ERROR_MEMORY_ALLOCATION: "out of memory",
    ERROR_INITIALIZATION: "initialization error",
    ERROR_NOT_SUPPORTED: "operation not supported",
    ERROR_UNKNOWN: "unknown error",
}


def error_string(code: int) -> str:
    return ERROR_STRINGS.get(code, "unrecognized error code")


class RuntimeCapabilities:
    """
    Tracks availability and device details of a runtime.
    """

    def __init__(self, name: str):
        self.name = name
        self.available = False
        self.device_count = 0
        self.device_names: List[str] = []
        self.compute_capability: Optional[str] = None
        self.memory_gb: float = 0.0
        self.has_gemm = False
        self.error_msg: Optional[str] = None

    def __repr__(self) -> str:
        if not self.available:
            return f"<RuntimeCapabilities({self.name}, unavailable: {self.error_msg})>"
        return f"<RuntimeCapabilities({self.name}, devices={self.device_count}, gemm={self.has_gemm})>"


class AcceleratorRuntime(ABC):
    """
    Abstract base class for accelerator runtimes.

    Each runtime must implement:
    - Device detection (`initialize`)
    - Device allocation and release
    - Synchronous host<->device copies
    - Translation of its native exceptions into (code, message) pairs
    """

    def __init__(self, name: str):
        self.name = name
        self.capabilities = RuntimeCapabilities(name)
        self._initialized = False
        self._last_error: Tuple[int, str] = (SUCCESS, error_string(SUCCESS))
        # Bumped by device_reset(); addresses from an older generation are dead.
        self.generation = 0

    @abstractmethod
    def initialize(self) -> bool:
        """
        Initialize the runtime and detect capabilities.

        Returns:
            True if the runtime is usable, False otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def _malloc(self, nbytes: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def _free(self, ptr: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def _memcpy_htod(self, dst: int, src: np.ndarray, nbytes: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def _memcpy_dtoh(self, dst: np.ndarray, src: int, nbytes: int) -> None:
        raise NotImplementedError

    def _translate_error(self, exc: BaseException) -> Optional[Tuple[int, str]]:
        """Map a native runtime exception to (code, message); None re-raises it."""
        return None

    def _gemm(self, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc) -> None:
        self._record(ERROR_NOT_SUPPORTED, f"{self.name} runtime provides no gemm kernel")

    def _device_reset(self) -> None:
        pass

    def _synchronize(self) -> None:
        pass

    # error slot

    def _record(self, code: int, message: Optional[str] = None) -> None:
        self._last_error = (int(code), message or error_string(code))

    def get_last_error(self) -> Tuple[int, str]:
        """Return and clear the last error, like cudaGetLastError."""
        err = self._last_error
        self._last_error = (SUCCESS, error_string(SUCCESS))
        return err

    def peek_last_error(self) -> Tuple[int, str]:
        return self._last_error

    def _ensure_initialized(self) -> bool:
        if not self._initialized:
            self.initialize()
        if not self.capabilities.available:
            self._record(ERROR_INITIALIZATION, self.capabilities.error_msg)
            return False
        return True

    def _guarded(self, op: str, fn, *args, default=None):
        if not self._ensure_initialized():
            return default
        try:
            return fn(*args)
        except Exception as e:
            err = self._translate_error(e)
            if err is None:
                raise
            logger.debug(f"[{self.name}] {op} failed: [{err[0]}] {err[1]}")
            self._record(*err)
            return default

    # public surface

    def malloc(self, nbytes: int) -> int:
        """Allocate `nbytes` of device memory; returns 0 and records an error on failure."""
        ptr = self._guarded("malloc", self._malloc, int(nbytes), default=0)
        return int(ptr or 0)

    def free(self, ptr: int) -> None:
        self._guarded("free", self._free, int(ptr))

    def memcpy_htod(self, dst: int, src: np.ndarray, nbytes: int) -> None:
        if nbytes == 0:
            return
        self._guarded("memcpy_htod", self._memcpy_htod, int(dst), src, int(nbytes))

    def memcpy_dtoh(self, dst: np.ndarray, src: int, nbytes: int) -> None:
        if nbytes == 0:
            return
        self._guarded("memcpy_dtoh", self._memcpy_dtoh, dst, int(src), int(nbytes))

    def gemm(self, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc) -> None:
        """C = alpha * A @ B + beta * C on column-major float64 device buffers.

        A is m x k (leading dimension lda), B is k x n (ldb), C is m x n (ldc).
        When beta is 0, C is not read.
        """
        self._guarded(
            "gemm", self._gemm, int(m), int(n), int(k), float(alpha), int(a), int(lda),
            int(b), int(ldb), float(beta), int(c), int(ldc),
        )

    def device_reset(self) -> None:
        logger.debug(f"[{self.name}] device reset")
        self.generation += 1
        self._device_reset()

    def synchronize(self) -> None:
        self._guarded("synchronize", self._synchronize)

    def get_device_info(self) -> Dict[str, Any]:
        """Get detailed device information."""
        if not self._initialized:
            self.initialize()
        return {
            "name": self.name,
            "available": self.capabilities.available,
            "device_count": self.capabilities.device_count,
            "device_names": self.capabilities.device_names,
            "compute_capability": self.capabilities.compute_capability,
            "memory_gb": self.capabilities.memory_gb,
            "gemm": self.capabilities.has_gemm,
            "error": self.capabilities.error_msg,
        }

    def __repr__(self) -> str:
        status = "available" if self.capabilities.available else "unavailable"
        return f"<{self.__class__.__name__}({self.name}, {status})>"
