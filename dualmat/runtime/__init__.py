"""Accelerator runtimes.

Optional CUDA libraries (cupy, pycuda) are only imported when the
corresponding runtime is requested.
"""
from __future__ import annotations

from .base import AcceleratorRuntime, RuntimeCapabilities, error_string
from .registry import (
    available_runtimes,
    get_runtime,
    is_cupy_available,
    is_pycuda_available,
    reset_runtimes,
)
from .simulated import SimulatedRuntime

__all__ = [
    "AcceleratorRuntime",
    "RuntimeCapabilities",
    "SimulatedRuntime",
    "available_runtimes",
    "error_string",
    "get_runtime",
    "is_cupy_available",
    "is_pycuda_available",
    "reset_runtimes",
]
