import pytest

from dualmat import config as _cfg
from dualmat.host import TrackingHostAllocator
from dualmat.matrix import Matrix
from dualmat.runtime import SimulatedRuntime, reset_runtimes


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for meta in _cfg.describe():
        monkeypatch.delenv(meta["name"], raising=False)
    yield
    reset_runtimes()


@pytest.fixture
def rt():
    return SimulatedRuntime()


@pytest.fixture
def host_alloc():
    return TrackingHostAllocator()


@pytest.fixture
def make(rt, host_alloc):
    """Factory for matrices bound to the per-test runtime and host allocator."""

    def _make(rows, cols, values=None):
        m = Matrix(rows, cols, runtime=rt, host_allocator=host_alloc)
        if values is not None:
            m.load(values)
        return m

    return _make
