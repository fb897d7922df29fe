# examples/column_major_gemm.py
"""
Walk through the full transport cycle: fill host buffers, push them to the
device in column-major order, run gemm against the raw device buffers, pull
the result back into row-major order and check it.
"""
import numpy as np

from dualmat import Matrix, gemm, get_runtime

rt = get_runtime()
print(f"runtime: {rt.name}")

a_np = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
b_np = np.array([[7.0, 8.0], [9.0, 10.0], [11.0, 12.0]])

with Matrix.from_array(a_np, runtime=rt) as a, Matrix.from_array(b_np, runtime=rt) as b, \
        Matrix(2, 2, runtime=rt) as c, Matrix.from_array(a_np @ b_np, runtime=rt) as expected:
    a.push_to_device_transposed()
    b.push_to_device_transposed()
    gemm(a, b, c)
    c.pull_from_device_transposed()
    c.print()
    print("matches numpy:", c.is_approximately_equal(expected))
