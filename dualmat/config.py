"""Central environment configuration utilities for dualmat.

Provides typed accessors, a registry of known DUALMAT_* variables, and helper
functions to introspect current effective configuration. Matrix and runtime
code read settings through `get()` rather than touching os.environ directly.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class EnvVarMeta:
    name: str
    description: str
    default: Any
    parser: Callable[[str], Any]
    choices: Optional[List[str]] = None
    category: str = "general"


def _parse_bool(val: str) -> bool:
    return str(val).lower() in ("1", "true", "yes", "on")


def _parse_int(val: str) -> int:
    try:
        return int(val)
    except Exception:
        return 0


def _parse_float(val: str) -> float:
    return float(val)


def _parse_choice(choices: List[str]) -> Callable[[str], str]:
    def _parse(val: str) -> str:
        v = str(val).strip().lower()
        if v not in choices:
            raise ValueError(f"expected one of {choices}, got {val!r}")
        return v

    return _parse


def _identity(val: str) -> str:
    return val


_RUNTIME_CHOICES = ["auto", "cupy", "pycuda", "simulated"]
_FAULT_CHOICES = ["exit", "abort"]

_REGISTRY: Dict[str, EnvVarMeta] = {
    # Process behavior
    "DUALMAT_LOAD_DOTENV": EnvVarMeta(
        name="DUALMAT_LOAD_DOTENV",
        description="Load .env files when the CLI starts (set 0 to disable)",
        default="1",
        parser=_parse_bool,
        category="general",
    ),
    # Accelerator runtime
    "DUALMAT_RUNTIME": EnvVarMeta(
        name="DUALMAT_RUNTIME",
        description="Accelerator runtime: auto|cupy|pycuda|simulated",
        default="auto",
        parser=_parse_choice(_RUNTIME_CHOICES),
        choices=_RUNTIME_CHOICES,
        category="runtime",
    ),
    "DUALMAT_DEVICE_INDEX": EnvVarMeta(
        name="DUALMAT_DEVICE_INDEX",
        description="CUDA device ordinal used by the cupy/pycuda runtimes",
        default="0",
        parser=_parse_int,
        category="runtime",
    ),
    "DUALMAT_FAULT_POLICY": EnvVarMeta(
        name="DUALMAT_FAULT_POLICY",
        description="On accelerator failure: exit (raise AcceleratorFault) or abort (os.abort)",
        default="exit",
        parser=_parse_choice(_FAULT_CHOICES),
        choices=_FAULT_CHOICES,
        category="runtime",
    ),
    # Matrix behavior
    "DUALMAT_TOLERANCE": EnvVarMeta(
        name="DUALMAT_TOLERANCE",
        description="Default absolute tolerance for is_approximately_equal",
        default="1e-3",
        parser=_parse_float,
        category="matrix",
    ),
    "DUALMAT_STRICT_LAYOUT": EnvVarMeta(
        name="DUALMAT_STRICT_LAYOUT",
        description="Raise instead of warn when a pull variant disagrees with the device layout tag",
        default="0",
        parser=_parse_bool,
        category="matrix",
    ),
    "DUALMAT_PRINT_PRECISION": EnvVarMeta(
        name="DUALMAT_PRINT_PRECISION",
        description="Decimal places used by Matrix.print (fields stay 7 characters wide)",
        default="0",
        parser=_parse_int,
        category="matrix",
    ),
    # Logging
    "DUALMAT_LOG_LEVEL": EnvVarMeta(
        name="DUALMAT_LOG_LEVEL",
        description="Override log verbosity (DEBUG,INFO,WARNING,ERROR)",
        default="INFO",
        parser=_identity,
        category="logging",
    ),
}


def get(name: str) -> Any:
    meta = _REGISTRY.get(name)
    if not meta:
        return os.environ.get(name)
    raw = os.environ.get(name, str(meta.default))
    try:
        return meta.parser(raw)
    except Exception:
        return meta.parser(str(meta.default))


def as_dict(include_unset: bool = False) -> Dict[str, Any]:
    data = {}
    for k in _REGISTRY:
        raw = os.environ.get(k)
        if raw is None and not include_unset:
            continue
        data[k] = get(k)
    return data


def describe() -> List[Dict[str, Any]]:
    info = []
    for meta in _REGISTRY.values():
        info.append(
            {
                "name": meta.name,
                "category": meta.category,
                "default": meta.default,
                "current": get(meta.name),
                "description": meta.description,
                "choices": meta.choices or [],
            }
        )
    return sorted(info, key=lambda x: (x["category"], x["name"]))


__all__ = ["get", "as_dict", "describe", "EnvVarMeta"]

# Runtime overrides registry (set via set()) for introspection.
_OVERRIDES: Dict[str, Any] = {}
_SET_LOCK = threading.Lock()


def set(name: str, value: Any) -> None:
    """Set an environment variable (stringifying value) and record override.

    Booleans are written as 1/0 so they round-trip through `_parse_bool`.
    """
    if isinstance(value, bool):
        value_str = "1" if value else "0"
    else:
        value_str = str(value)
    with _SET_LOCK:
        os.environ[name] = value_str
        _OVERRIDES[name] = value


def overrides() -> Dict[str, Any]:
    return dict(_OVERRIDES)


__all__.extend(["set", "overrides"])
