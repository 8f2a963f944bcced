import numpy as np
import pytest
from numpy.testing import assert_allclose

from nlfem.core import ConfigurationError, LocalMatrix, LocalVector


def _rand(m, n, seed):
    A = LocalMatrix(m, n)
    A.set_random(seed)
    return A


def test_one_based_access():
    A = LocalMatrix.from_numpy([[1.0, 2.0], [3.0, 4.0]])
    assert A[1, 1] == 1.0
    assert A[2, 1] == 3.0
    # flat access is row-major
    assert [A[k] for k in range(1, 5)] == [1.0, 2.0, 3.0, 4.0]
    A[2, 2] = 7.0
    assert A.to_numpy()[1, 1] == 7.0


@pytest.mark.parametrize("key", [(0, 1), (1, 0), (3, 1), (-1, 1)])
def test_out_of_range_index(key):
    A = LocalMatrix(2, 2)
    with pytest.raises(IndexError):
        A[key]


def test_vector_index_zero():
    v = LocalVector(3, 1.0)
    assert v[3] == 1.0
    with pytest.raises(IndexError):
        v[0]


def test_product_associative():
    A, B, C = _rand(3, 4, 1), _rand(4, 2, 2), _rand(2, 5, 3)
    assert_allclose(((A @ B) @ C).to_numpy(), (A @ (B @ C)).to_numpy(), rtol=1e-12)


def test_sum_associative():
    A, B, C = _rand(3, 4, 7), _rand(3, 4, 8), _rand(3, 4, 9)
    assert_allclose(((A + B) + C).to_numpy(), (A + (B + C)).to_numpy(), rtol=1e-14)
    assert_allclose(((A + 2.5) + C).to_numpy(), (A + (2.5 + C)).to_numpy(), rtol=1e-14)
    assert_allclose(((1.0 + B) - C).to_numpy(), (1.0 + (B - C)).to_numpy(), rtol=1e-14)
    a = LocalVector.from_numpy([1.0, -2.0, 0.5])
    b = LocalVector.from_numpy([0.25, 4.0, 3.0])
    assert list((a + b) + 1.5) == list(a + (b + 1.5))


def test_transpose_twice_is_identity():
    A = _rand(3, 5, 4)
    assert A.transpose().transpose() == A
    B = A.transpose()
    B.transpose_inplace()
    assert B == A
    assert A.transpose().shape == (5, 3)


def test_inverse_roundtrip():
    A = _rand(4, 4, 5) + LocalMatrix.identity(4) * 4.0
    assert_allclose((A @ A.inverse()).to_numpy(), np.eye(4), atol=1e-10)
    assert np.isclose(A.det() * A.inverse().det(), 1.0)


def test_inverse_non_square():
    with pytest.raises(ConfigurationError):
        LocalMatrix(2, 3).inverse()
    with pytest.raises(ConfigurationError):
        LocalMatrix(3, 2).det()


def test_shape_mismatch():
    with pytest.raises(ConfigurationError):
        LocalMatrix(2, 2) + LocalMatrix(3, 3)
    with pytest.raises(ConfigurationError):
        LocalMatrix(2, 3) @ LocalMatrix(2, 3)
    with pytest.raises(ConfigurationError):
        LocalMatrix(2, 3) @ LocalVector(2)
    with pytest.raises(ConfigurationError):
        LocalVector(2) - LocalVector(3)


@pytest.mark.parametrize("op", ["+", "-", "+=", "r+"])
def test_matrix_vector_sum_rejected(op):
    A, v = LocalMatrix(2, 2), LocalVector(2)
    with pytest.raises(ConfigurationError):
        if op == "+":
            A + v
        elif op == "-":
            A - v
        elif op == "+=":
            v += A
        else:
            v + A


@pytest.mark.parametrize("key", [1.9, 2.0, (1, 1.5), "1"])
def test_non_integer_index(key):
    A = LocalMatrix(2, 2, 1.0)
    with pytest.raises(IndexError):
        A[key]
    with pytest.raises(IndexError):
        LocalVector(3)[1.9]


def test_numpy_integer_index():
    A = LocalMatrix.from_numpy([[1.0, 2.0], [3.0, 4.0]])
    assert A[np.int64(2), np.int64(1)] == 3.0


def test_star_is_scalar_only():
    A = LocalMatrix(2, 2, 1.0)
    assert (A * 2.0) == LocalMatrix(2, 2, 2.0)
    assert (3.0 * A) == LocalMatrix(2, 2, 3.0)
    with pytest.raises(TypeError):
        A * A


def test_inplace_arithmetic():
    A = LocalMatrix(2, 2, 1.0)
    A += 1.0
    A *= 3.0
    A -= LocalMatrix(2, 2, 2.0)
    A /= 2.0
    assert_allclose(A.to_numpy(), np.full((2, 2), 2.0))
    assert (-A)[1, 2] == -2.0


def test_assign_adopts_shape_when_empty():
    B = _rand(2, 3, 6)
    A = LocalMatrix()
    A.assign(B)
    assert A == B
    with pytest.raises(ConfigurationError):
        LocalMatrix(3, 3).assign(B)


def test_matrix_vector_product():
    A = LocalMatrix.from_numpy([[1.0, 2.0], [0.0, 1.0]])
    b = LocalVector.from_numpy([1.0, 1.0])
    y = A @ b
    assert isinstance(y, LocalVector)
    assert list(y) == [3.0, 1.0]


def test_vector_ops():
    a = LocalVector.from_numpy([3.0, 4.0])
    b = LocalVector(2, 1.0)
    assert a.dot(b) == 7.0
    assert a.norm() == 5.0
    assert list((a - b) / 2.0) == [1.0, 1.5]
    a.resize(3, 2.0)
    assert a.size == 3 and a[3] == 2.0
    a.set_zero()
    assert a.norm() == 0.0
