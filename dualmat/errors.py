"""
Exception types and the accelerator error-check boundary.

Accelerator failures are not recoverable: device state is undefined after a
fault, so `check_accelerator` logs the failure with the caller's file/line,
resets the device and then terminates, either by raising `AcceleratorFault`
(a SystemExit, so ordinary `except Exception` handlers do not swallow it) or
by calling os.abort() when DUALMAT_FAULT_POLICY=abort.
"""
from __future__ import annotations

import inspect
import os
from typing import Optional

from . import config as _cfg
from .utils.logging import get_logger

logger = get_logger(__name__)

SUCCESS = 0


class DualmatError(Exception):
    """Base class for recoverable dualmat errors."""


class HostAllocationError(DualmatError, MemoryError):
    """Host buffer could not be allocated."""


class CopyNotSupportedError(DualmatError, TypeError):
    """Raised on any implicit copy of an owning container."""


class LayoutMismatchError(DualmatError, ValueError):
    """A pull variant disagrees with the recorded device layout."""


class RuntimeUnavailableError(DualmatError, RuntimeError):
    """The requested accelerator runtime library is not importable or has no device."""


class KernelUnavailableError(DualmatError, RuntimeError):
    """The runtime does not provide the requested numeric kernel."""


class AcceleratorFault(SystemExit):
    """Unrecoverable accelerator failure.

    Carries the runtime status code, its human readable message and the
    source location of the failing call.
    """

    def __init__(self, code: int, message: str, where: str = "", location: str = ""):
        self.status = int(code)
        self.message = message
        self.where = where
        self.location = location
        text = f"Accelerator failure at {location}"
        if where:
            text += f" ({where})"
        text += f": [{code}] {message}"
        self.text = text
        super().__init__(text)

    def __str__(self) -> str:
        return self.text


def _caller_location(depth: int) -> str:
    frame = inspect.currentframe()
    try:
        for _ in range(depth + 1):
            if frame is None:
                break
            frame = frame.f_back
        if frame is None:
            return "<unknown>"
        return f"{os.path.basename(frame.f_code.co_filename)}:{frame.f_lineno}"
    finally:
        del frame


def check_accelerator(runtime, where: str = "", _depth: int = 1) -> None:
    """Query the runtime's last error and terminate on anything but success.

    Call right after every accelerator operation. `_depth` selects which
    caller frame is reported as the failure location.
    """
    code, message = runtime.get_last_error()
    if code == SUCCESS:
        return
    fatal(runtime, code, message, where=where, location=_caller_location(_depth))


def fatal(runtime, code: int, message: str, where: str = "", location: Optional[str] = None) -> None:
    location = location or _caller_location(1)
    fault = AcceleratorFault(code, message, where=where, location=location)
    logger.critical(str(fault))
    try:
        runtime.device_reset()
    except Exception as e:
        logger.error(f"device reset after failure also failed: {e}")
    if _cfg.get("DUALMAT_FAULT_POLICY") == "abort":
        os.abort()
    raise fault


__all__ = [
    "SUCCESS",
    "DualmatError",
    "HostAllocationError",
    "CopyNotSupportedError",
    "LayoutMismatchError",
    "RuntimeUnavailableError",
    "KernelUnavailableError",
    "AcceleratorFault",
    "check_accelerator",
    "fatal",
]
