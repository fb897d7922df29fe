"""Runtime selection.

`get_runtime()` resolves a runtime by explicit name or by DUALMAT_RUNTIME.
`auto` prefers real devices (cupy, then pycuda) and falls back to the
host-emulated runtime. Instances are cached per name so every container in a
process shares one accelerator context.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from .. import config as _cfg
from ..errors import RuntimeUnavailableError
from ..utils.logging import get_logger
from .base import AcceleratorRuntime

logger = get_logger(__name__)

_RUNTIMES: Dict[str, AcceleratorRuntime] = {}


def _create(name: str) -> AcceleratorRuntime:
    if name == "cupy":
        from .cupy_runtime import CupyRuntime

        return CupyRuntime()
    if name == "pycuda":
        from .pycuda_runtime import PycudaRuntime

        return PycudaRuntime()
    if name == "simulated":
        from .simulated import SimulatedRuntime

        return SimulatedRuntime()
    raise ValueError(f"unknown runtime {name!r}")


def is_cupy_available() -> bool:
    from .cupy_runtime import is_cupy_available as _avail

    return _avail()


def is_pycuda_available() -> bool:
    from .pycuda_runtime import is_pycuda_available as _avail

    return _avail()


def available_runtimes() -> List[str]:
    names = []
    if is_cupy_available():
        names.append("cupy")
    if is_pycuda_available():
        names.append("pycuda")
    names.append("simulated")
    return names


def get_runtime(name: Optional[str] = None) -> AcceleratorRuntime:
    """Return the shared runtime instance for `name` (default: DUALMAT_RUNTIME)."""
    name = (name or _cfg.get("DUALMAT_RUNTIME") or "auto").lower()
    if name == "auto":
        for candidate in ("cupy", "pycuda"):
            if candidate in _RUNTIMES or (
                is_cupy_available() if candidate == "cupy" else is_pycuda_available()
            ):
                return get_runtime(candidate)
        logger.debug("no CUDA runtime found; using simulated runtime")
        return get_runtime("simulated")
    runtime = _RUNTIMES.get(name)
    if runtime is None:
        runtime = _create(name)
        if not runtime.initialize():
            raise RuntimeUnavailableError(
                f"runtime {name!r} unavailable: {runtime.capabilities.error_msg}"
            )
        _RUNTIMES[name] = runtime
        logger.debug(f"Registered runtime: {name}")
    return runtime


def reset_runtimes() -> None:
    """Forget cached runtime instances."""
    _RUNTIMES.clear()
