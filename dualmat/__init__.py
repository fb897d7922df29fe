"""
Top-level dualmat package exports (lightweight).

Public symbols are imported lazily so that `import dualmat` never pulls in
an accelerator library.
"""
from __future__ import annotations

import importlib
from typing import Any

__all__ = [
    "Matrix",
    "transfer_ownership",
    "Layout",
    "gemm",
    "get_runtime",
    "AcceleratorFault",
    "CopyNotSupportedError",
    "HostAllocationError",
    "LayoutMismatchError",
    "config",
]

_EXPORTS = {
    "Matrix": ".matrix",
    "transfer_ownership": ".matrix",
    "Layout": ".layout",
    "gemm": ".kernels",
    "get_runtime": ".runtime",
    "AcceleratorFault": ".errors",
    "CopyNotSupportedError": ".errors",
    "HostAllocationError": ".errors",
    "LayoutMismatchError": ".errors",
}


def __getattr__(name: str) -> Any:  # lazy attribute loader
    if name == "config":
        mod = importlib.import_module(__name__ + ".config")
        globals()["config"] = mod
        return mod
    target = _EXPORTS.get(name)
    if target is None:
        raise AttributeError(f"module 'dualmat' has no attribute {name!r}")
    value = getattr(importlib.import_module(target, __name__), name)
    # Cache on the package module to avoid repeated imports
    globals()[name] = value
    return value
