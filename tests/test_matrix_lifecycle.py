import copy
import gc
import pickle

import numpy as np
import pytest

from dualmat.errors import CopyNotSupportedError
from dualmat.layout import Layout
from dualmat.matrix import Matrix, transfer_ownership


def test_construct_allocates_nothing(rt, host_alloc, make):
    m = make(3, 4)
    assert m.shape == (3, 4)
    assert m.size == 12
    assert m.nbytes == 96
    assert not m.has_host and not m.has_device
    assert rt.malloc_calls == 0 and host_alloc.allocations == 0


def test_negative_shape_rejected():
    with pytest.raises(ValueError):
        Matrix(-1, 2)


@pytest.mark.parametrize("shape", [(0, 0), (0, 3), (1, 1), (2, 3), (5, 4)])
def test_allocate_then_release_leaves_nothing_outstanding(rt, host_alloc, make, shape):
    m = make(*shape)
    m.allocate_host()
    m.allocate_device()
    assert host_alloc.outstanding == 1 and rt.outstanding == 1
    m.release_host()
    m.release_device()
    assert host_alloc.outstanding == 0, host_alloc.stats()
    assert rt.outstanding == 0, rt.stats()


def test_release_is_safe_to_repeat(rt, host_alloc, make):
    m = make(2, 2)
    m.release_host()
    m.release_device()
    m.allocate_host()
    m.allocate_device()
    for _ in range(3):
        m.release_host()
        m.release_device()
    assert rt.free_calls == 1, "device buffer freed more than once"
    assert host_alloc.releases == 1
    assert m.host is None and m.device_ptr is None


def test_allocate_host_twice_does_not_leak(host_alloc, make):
    m = make(4, 4)
    m.allocate_host()
    first = m.host
    m.allocate_host()
    assert m.host is not first
    assert host_alloc.outstanding == 1
    assert host_alloc.releases == 1


def test_allocate_device_twice_does_not_leak(rt, make):
    m = make(4, 4)
    m.allocate_device()
    first = m.device_ptr
    m.allocate_device()
    assert m.device_ptr != first
    assert rt.outstanding == 1
    assert m.device_layout is None


def test_destroy_is_idempotent(rt, host_alloc, make):
    m = make(2, 3, [[1, 2, 3], [4, 5, 6]])
    m.push_to_device()
    m.destroy()
    m.close()
    m.destroy()
    assert rt.free_calls == 1
    assert rt.outstanding == 0 and host_alloc.outstanding == 0
    assert m.shape == (2, 3)


def test_context_manager_releases_both_buffers(rt, host_alloc, make):
    with make(2, 2, [[1, 2], [3, 4]]) as m:
        m.push_to_device_transposed()
        assert rt.outstanding == 1
    assert rt.outstanding == 0
    assert host_alloc.outstanding == 0


def test_context_manager_releases_on_error(rt, host_alloc, make):
    with pytest.raises(KeyError):
        with make(2, 2, [[1, 2], [3, 4]]) as m:
            m.push_to_device()
            raise KeyError("boom")
    assert rt.outstanding == 0 and host_alloc.outstanding == 0


def test_dropping_last_reference_releases(rt, host_alloc, make):
    m = make(3, 3, np.arange(9).reshape(3, 3))
    m.push_to_device()
    del m
    gc.collect()
    assert rt.outstanding == 0
    assert host_alloc.outstanding == 0


def test_move_transfers_buffers_and_shape(rt, host_alloc, make):
    a = make(2, 3, [[1, 2, 3], [4, 5, 6]])
    a.push_to_device_transposed()
    a_host, a_dev = a.host, a.device_ptr

    b = make(1, 1, [[9]])
    b.push_to_device()
    transfer_ownership(a, b)

    assert b.shape == (2, 3)
    assert b.host is a_host and b.device_ptr == a_dev
    assert b.device_layout is Layout.COL_MAJOR
    assert a.host is None and a.device_ptr is None and a.device_layout is None
    # b's previous buffers were released, a's now live in b
    assert rt.outstanding == 1 and host_alloc.outstanding == 1

    a.destroy()
    del a
    gc.collect()
    assert rt.outstanding == 1, "destroying the moved-from matrix freed the target's buffer"
    assert b.at(1, 2) == 6.0
    b.release_host()
    b.pull_from_device_transposed()
    assert b.to_numpy().tolist() == [[1, 2, 3], [4, 5, 6]]


def test_moved_from_builds_new_owner(rt, make):
    a = make(2, 2, [[1, 2], [3, 4]])
    a.push_to_device()
    b = Matrix.moved_from(a)
    assert b.runtime is rt
    assert not a.has_host and not a.has_device
    assert b.at(1, 0) == 3.0
    assert rt.outstanding == 1


def test_move_into_self_is_noop(rt, make):
    a = make(2, 2, [[1, 2], [3, 4]])
    a.push_to_device()
    a.take(a)
    assert a.has_host and a.has_device
    assert rt.outstanding == 1


def test_implicit_copies_are_rejected(make):
    m = make(2, 2, [[1, 2], [3, 4]])
    with pytest.raises(CopyNotSupportedError):
        copy.copy(m)
    with pytest.raises(CopyNotSupportedError):
        copy.deepcopy(m)
    with pytest.raises(CopyNotSupportedError):
        pickle.dumps(m)
    assert isinstance(CopyNotSupportedError("x"), TypeError)


def test_duplicate_is_independent(rt, host_alloc, make):
    m = make(2, 3, [[1, 2, 3], [4, 5, 6]])
    m.push_to_device_transposed()
    dup = m.duplicate()

    assert dup.shape == m.shape
    assert dup.device_ptr != m.device_ptr
    assert dup.device_layout is Layout.COL_MAJOR
    assert np.array_equal(rt.read(dup.device_ptr), rt.read(m.device_ptr))

    dup.host[0] = 100.0
    assert m.at(0, 0) == 1.0
    dup.release_host()
    dup.pull_from_device_transposed()
    assert dup.is_approximately_equal(m, tolerance=0.0)
    # staging buffer released
    assert host_alloc.outstanding == 2
    assert rt.outstanding == 2


def test_duplicate_of_empty_matrix(rt, make):
    m = make(3, 2)
    dup = m.duplicate()
    assert dup.shape == (3, 2)
    assert not dup.has_host and not dup.has_device
    assert rt.malloc_calls == 0


def test_from_array_requires_2d():
    with pytest.raises(ValueError):
        Matrix.from_array([1.0, 2.0, 3.0])


def test_load_rejects_wrong_size(make):
    m = make(2, 2)
    with pytest.raises(ValueError):
        m.load([1.0, 2.0, 3.0])
