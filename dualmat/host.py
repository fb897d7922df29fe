"""
Host memory allocators.

`HostAllocator` hands out flat float64 numpy arrays with unspecified contents.
`TrackingHostAllocator` additionally records every live buffer so tests (and
the CLI demo) can assert that nothing is left outstanding.
"""
from __future__ import annotations

from typing import Dict, Optional

import numpy as np

from .errors import HostAllocationError
from .utils.logging import get_logger

logger = get_logger(__name__)

DTYPE = np.float64


class HostAllocator:
    """Plain numpy-backed host allocator."""

    name = "numpy"

    def allocate(self, count: int) -> np.ndarray:
        if count < 0:
            raise HostAllocationError(f"cannot allocate {count} doubles")
        try:
            buf = np.empty(count, dtype=DTYPE)
        except MemoryError as e:
            logger.error(f"host allocation of {count} doubles failed: {e}")
            raise HostAllocationError(f"host allocation of {count} doubles failed") from e
        return buf

    def release(self, buf: np.ndarray) -> None:
        # numpy memory is reclaimed once the last reference is dropped.
        pass


class TrackingHostAllocator(HostAllocator):
    """Host allocator that keeps a ledger of live buffers.

    Releasing a buffer that is not live (never allocated here, or already
    released) raises RuntimeError, which makes double frees visible in tests.
    `fail_after` makes the n-th following allocation fail.
    """

    name = "tracking"

    def __init__(self, fail_after: Optional[int] = None):
        self._live: Dict[int, np.ndarray] = {}
        self.allocations = 0
        self.releases = 0
        self.fail_after = fail_after

    def allocate(self, count: int) -> np.ndarray:
        if self.fail_after is not None:
            if self.fail_after <= 0:
                self.fail_after = None
                raise HostAllocationError(f"injected host allocation failure ({count} doubles)")
            self.fail_after -= 1
        buf = super().allocate(count)
        self._live[id(buf)] = buf
        self.allocations += 1
        return buf

    def release(self, buf: np.ndarray) -> None:
        if self._live.pop(id(buf), None) is None:
            raise RuntimeError("release of a host buffer that is not live (double free?)")
        self.releases += 1

    @property
    def outstanding(self) -> int:
        return len(self._live)

    def stats(self) -> Dict[str, int]:
        return {
            "allocations": self.allocations,
            "releases": self.releases,
            "outstanding": self.outstanding,
        }


_DEFAULT = HostAllocator()


def default_host_allocator() -> HostAllocator:
    return _DEFAULT


__all__ = ["DTYPE", "HostAllocator", "TrackingHostAllocator", "default_host_allocator"]
