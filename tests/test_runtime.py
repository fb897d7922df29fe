import numpy as np
import pytest

from dualmat.errors import RuntimeUnavailableError
from dualmat.matrix import Matrix
from dualmat.runtime import (
    SimulatedRuntime,
    available_runtimes,
    get_runtime,
    is_cupy_available,
    is_pycuda_available,
)
from dualmat.runtime.base import ERROR_INITIALIZATION, ERROR_NOT_SUPPORTED


def test_get_runtime_caches_instances():
    a = get_runtime("simulated")
    b = get_runtime("simulated")
    assert a is b
    assert isinstance(a, SimulatedRuntime)


def test_get_runtime_from_environment(monkeypatch):
    monkeypatch.setenv("DUALMAT_RUNTIME", "simulated")
    assert get_runtime().name == "simulated"


def test_unknown_runtime_name():
    with pytest.raises(ValueError):
        get_runtime("opengl")


@pytest.mark.skipif(is_cupy_available() or is_pycuda_available(), reason="CUDA device present")
def test_auto_falls_back_to_simulated():
    assert get_runtime("auto").name == "simulated"
    assert available_runtimes() == ["simulated"]


@pytest.mark.skipif(is_cupy_available(), reason="CuPy device present")
def test_missing_cupy_is_reported():
    with pytest.raises(RuntimeUnavailableError):
        get_runtime("cupy")


def test_matrix_resolves_default_runtime_lazily(monkeypatch):
    monkeypatch.setenv("DUALMAT_RUNTIME", "simulated")
    m = Matrix.from_array([[1.0, 2.0]])
    assert m._runtime is None
    m.push_to_device()
    assert m.runtime is get_runtime("simulated")
    m.destroy()
    assert get_runtime("simulated").outstanding == 0


def test_device_info_reports_simulated_device(rt):
    info = rt.get_device_info()
    assert info["available"] is True
    assert info["device_count"] == 1
    assert info["gemm"] is True


def test_uninitialized_runtime_records_error():
    class Broken(SimulatedRuntime):
        def initialize(self):
            self.capabilities.available = False
            self.capabilities.error_msg = "no device"
            self._initialized = True
            return False

    rt = Broken()
    assert rt.malloc(8) == 0
    assert rt.get_last_error() == (ERROR_INITIALIZATION, "no device")


def test_missing_gemm_reports_not_supported(rt):
    from dualmat.runtime.base import AcceleratorRuntime

    AcceleratorRuntime._gemm(rt, 1, 1, 1, 1.0, 0, 1, 0, 1, 0.0, 0, 1)
    assert rt.get_last_error()[0] == ERROR_NOT_SUPPORTED


@pytest.mark.skipif(not is_cupy_available(), reason="CuPy/CUDA not available")
def test_cupy_roundtrip_and_gemm():
    from dualmat.kernels import gemm
    from dualmat.runtime.cupy_runtime import CupyRuntime

    rt = CupyRuntime()
    assert rt.initialize()
    a_np = np.arange(6.0).reshape(2, 3)
    b_np = np.arange(12.0).reshape(3, 4)
    with Matrix.from_array(a_np, runtime=rt) as a, Matrix.from_array(b_np, runtime=rt) as b, \
            Matrix(2, 4, runtime=rt) as c:
        a.push_to_device()
        a.release_host()
        a.pull_from_device()
        assert np.array_equal(a.to_numpy(), a_np)
        a.push_to_device_transposed()
        b.push_to_device_transposed()
        gemm(a, b, c)
        c.pull_from_device_transposed()
        assert np.allclose(c.to_numpy(), a_np @ b_np)


@pytest.mark.skipif(not is_pycuda_available(), reason="PyCUDA/CUDA not available")
def test_pycuda_transposed_roundtrip():
    from dualmat.runtime.pycuda_runtime import PycudaRuntime

    rt = PycudaRuntime()
    assert rt.initialize()
    values = np.arange(6.0).reshape(2, 3)
    m = Matrix.from_array(values, runtime=rt)
    m.push_to_device_transposed()
    m.allocate_host()
    m.pull_from_device_transposed()
    assert np.array_equal(m.to_numpy(), values)
    m.destroy()
    rt.device_reset()
