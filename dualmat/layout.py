"""Element ordering helpers for flat float64 buffers."""
from __future__ import annotations

from enum import Enum

import numpy as np


class Layout(Enum):
    """Physical ordering of a flat matrix buffer."""

    ROW_MAJOR = "row_major"  # (i, j) at i * cols + j
    COL_MAJOR = "col_major"  # (i, j) at j * rows + i


def idx_row_major(i: int, j: int, cols: int) -> int:
    return i * cols + j


def idx_col_major(i: int, j: int, ld: int) -> int:
    """Column-major offset with leading dimension `ld` (the row count)."""
    return j * ld + i


def row_to_col_major(src: np.ndarray, rows: int, cols: int, out: np.ndarray) -> np.ndarray:
    """Write the column-major ordering of row-major `src` into `out`.

    `out` must hold rows * cols float64 values and must not alias `src`.
    """
    out.reshape(cols, rows)[...] = src.reshape(rows, cols).T
    return out


def col_to_row_major(src: np.ndarray, rows: int, cols: int, out: np.ndarray) -> np.ndarray:
    """Inverse of `row_to_col_major`: read `src` as column-major, write row-major."""
    out.reshape(rows, cols)[...] = src.reshape(cols, rows).T
    return out


__all__ = ["Layout", "idx_row_major", "idx_col_major", "row_to_col_major", "col_to_row_major"]
