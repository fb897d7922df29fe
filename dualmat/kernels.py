"""
Device-side numeric kernels driven through Matrix device buffers.

Kernels read and write device memory through raw addresses plus leading
dimensions, and expect column-major operands: push inputs with
`push_to_device_transposed()` and read results with
`pull_from_device_transposed()`.
"""
from __future__ import annotations

from .errors import check_accelerator
from .layout import Layout
from .matrix import Matrix
from .utils.logging import get_logger

logger = get_logger(__name__)


def gemm(a: Matrix, b: Matrix, c: Matrix, alpha: float = 1.0, beta: float = 0.0) -> Matrix:
    """c = alpha * a @ b + beta * c on the device.

    `a` and `b` must already hold column-major device copies. `c` gets a
    device buffer if it has none and is tagged column-major afterwards.
    """
    if a.cols != b.rows or c.rows != a.rows or c.cols != b.cols:
        raise ValueError(f"gemm shape mismatch: {a.shape} @ {b.shape} -> {c.shape}")
    if not (a.runtime is b.runtime is c.runtime):
        raise ValueError("gemm operands are bound to different runtimes")
    if c.device_ptr is None:
        c.allocate_device()
    rt = a.runtime
    rt.gemm(
        a.rows, b.cols, a.cols,
        alpha, a.device_ptr, max(1, a.leading_dimension),
        b.device_ptr, max(1, b.leading_dimension),
        beta, c.device_ptr, max(1, c.leading_dimension),
    )
    check_accelerator(rt, "gemm")
    c.mark_device_layout(Layout.COL_MAJOR)
    logger.debug(f"gemm {a.rows}x{a.cols} @ {b.rows}x{b.cols} on {rt.name}")
    return c


__all__ = ["gemm"]
