import io

import numpy as np
import pytest

from dualmat.matrix import Matrix


def test_shape_mismatch_is_never_equal(make):
    a = make(2, 3, np.zeros((2, 3)))
    b = make(3, 2, np.zeros((3, 2)))
    assert a.size == b.size
    assert not a.is_approximately_equal(b)
    assert not b.is_approximately_equal(a)


@pytest.mark.parametrize("position", [0, 3, 5])
def test_tolerance_applies_at_every_position(make, position):
    base = np.arange(6.0)
    a = make(2, 3, base)

    close = base.copy()
    close[position] += 0.0005
    assert a.is_approximately_equal(make(2, 3, close)), f"0.0005 off at {position} should pass"

    far = base.copy()
    far[position] += 0.002
    assert not a.is_approximately_equal(make(2, 3, far)), f"0.002 off at {position} should fail"


def test_explicit_tolerance(make):
    a = make(1, 2, [[1.0, 2.0]])
    b = make(1, 2, [[1.05, 2.0]])
    assert not a.is_approximately_equal(b)
    assert a.is_approximately_equal(b, tolerance=0.1)
    assert a.is_approximately_equal(a, tolerance=0.0)


def test_default_tolerance_from_environment(monkeypatch, make):
    a = make(1, 1, [[1.0]])
    b = make(1, 1, [[1.01]])
    assert not a.is_approximately_equal(b)
    monkeypatch.setenv("DUALMAT_TOLERANCE", "0.05")
    assert a.is_approximately_equal(b)


def test_nan_is_never_equal(make):
    a = make(1, 2, [[np.nan, 1.0]])
    assert not a.is_approximately_equal(a)


def test_empty_matrices_are_equal(make):
    assert make(0, 3, []).is_approximately_equal(make(0, 3, []))
    assert not make(0, 3, []).is_approximately_equal(make(3, 0, []))


def test_at_uses_row_major_addressing(make):
    m = make(2, 3, [[1, 2, 3], [4, 5, 6]])
    assert m.at(0, 0) == 1.0
    assert m.at(0, 2) == 3.0
    assert m.at(1, 0) == 4.0
    assert m.at(1, 2) == 6.0
    assert m.leading_dimension == 2


def test_format_grid_fixed_width():
    m = Matrix.from_array([[1, 2, 3], [4, 5, 60]])
    text = m.format_grid()
    assert text == "      1      2      3\n      4      5     60\n"
    for line in text.splitlines():
        assert len(line) == 3 * 7


def test_format_grid_precision(monkeypatch):
    m = Matrix.from_array([[1.5, -2.25]])
    assert m.format_grid(precision=2) == "   1.50  -2.25\n"
    monkeypatch.setenv("DUALMAT_PRINT_PRECISION", "1")
    assert m.format_grid() == "    1.5   -2.2\n"


def test_format_grid_negative_precision_is_clamped(monkeypatch):
    monkeypatch.setenv("DUALMAT_PRINT_PRECISION", "-1")
    assert Matrix.from_array([[1, 2]]).format_grid() == "      1      2\n"


def test_print_writes_grid():
    m = Matrix.from_array([[7, 8]])
    buf = io.StringIO()
    m.print(file=buf)
    assert buf.getvalue() == "      7      8\n"


def test_to_numpy_is_a_view(make):
    m = make(2, 2, [[1, 2], [3, 4]])
    view = m.to_numpy()
    view[1, 1] = 40.0
    assert m.at(1, 1) == 40.0
    m.release_host()
    assert m.to_numpy() is None


def test_repr_mentions_shape_and_layout(make):
    m = make(2, 3, np.zeros((2, 3)))
    assert "2x3" in repr(m)
    m.push_to_device_transposed()
    assert "col_major" in repr(m)
