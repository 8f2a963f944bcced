"""nlfem.core.localmatrix
Dense element-local matrix / vector with 1-based element access.

Node and dof numbering in the surrounding FEM code starts at 1, so the
element-local Jacobian and residual containers follow the same convention:
``A[1, 1]`` is the first entry.  Storage is a plain row-major numpy array
and every index is translated at the access boundary; raw 0-based indices
never leak out of this module.

Binary operations require matching shapes.  A mismatch is an assembly bug,
so it raises :class:`~nlfem.core.errors.ConfigurationError` instead of
broadcasting.
"""
from __future__ import annotations

import operator
from numbers import Real
from typing import Optional, Tuple, Union

import numpy as np

from nlfem.core.errors import ConfigurationError

Scalar = Union[int, float, np.floating]


def _check_index(i: int, size: int, axis: str) -> int:
    """Translate a 1-based index into a 0-based offset."""
    try:
        i = operator.index(i)
    except TypeError:
        raise IndexError(f"{axis} index must be an integer, got {i!r}") from None
    if i < 1 or i > size:
        raise IndexError(f"{axis} index {i} out of range 1..{size} (indices start from 1)")
    return i - 1


class LocalVector:
    """Dense real vector, 1-based."""

    __slots__ = ("_vals",)

    def __init__(self, m: int = 0, value: float = 0.0):
        self._vals = np.full(int(m), float(value), dtype=float)

    # ------------------------------------------------------------------
    #  construction / conversion
    # ------------------------------------------------------------------
    @classmethod
    def from_numpy(cls, arr) -> "LocalVector":
        data = np.asarray(arr, dtype=float)
        if data.ndim != 1:
            raise ConfigurationError(f"LocalVector needs a 1-D array, got shape {data.shape}")
        v = cls()
        v._vals = data.copy()
        return v

    def to_numpy(self) -> np.ndarray:
        return self._vals.copy()

    def resize(self, m: int, value: float = 0.0) -> None:
        self._vals = np.full(int(m), float(value), dtype=float)

    def set_zero(self) -> None:
        self._vals[:] = 0.0

    @property
    def size(self) -> int:
        return self._vals.size

    def __len__(self) -> int:
        return self._vals.size

    # ------------------------------------------------------------------
    #  1-based access
    # ------------------------------------------------------------------
    def __getitem__(self, i: int) -> float:
        return float(self._vals[_check_index(i, self.size, "vector")])

    def __setitem__(self, i: int, val: float) -> None:
        self._vals[_check_index(i, self.size, "vector")] = val

    def __iter__(self):
        return iter(self._vals.tolist())

    # ------------------------------------------------------------------
    #  arithmetic
    # ------------------------------------------------------------------
    def _other(self, other, op: str) -> Union[float, np.ndarray]:
        if isinstance(other, LocalVector):
            if other.size != self.size:
                raise ConfigurationError(
                    f"a{op}b can't be applied for vectors of size {self.size} and {other.size}"
                )
            return other._vals
        if isinstance(other, LocalMatrix):
            raise ConfigurationError(
                f"a{op}b can't be applied for a vector of size {self.size} and a "
                f"{other.rows}x{other.cols} matrix"
            )
        if isinstance(other, Real):
            return float(other)
        return NotImplemented

    def _wrap(self, vals: np.ndarray) -> "LocalVector":
        out = LocalVector()
        out._vals = vals
        return out

    def __add__(self, other):
        b = self._other(other, "+")
        if b is NotImplemented:
            return b
        return self._wrap(self._vals + b)

    __radd__ = __add__

    def __sub__(self, other):
        b = self._other(other, "-")
        if b is NotImplemented:
            return b
        return self._wrap(self._vals - b)

    def __rsub__(self, other):
        if isinstance(other, Real):
            return self._wrap(float(other) - self._vals)
        return NotImplemented

    def __iadd__(self, other):
        b = self._other(other, "+")
        if b is NotImplemented:
            return b
        self._vals += b
        return self

    def __isub__(self, other):
        b = self._other(other, "-")
        if b is NotImplemented:
            return b
        self._vals -= b
        return self

    def __mul__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        return self._wrap(self._vals * float(val))

    __rmul__ = __mul__

    def __imul__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        self._vals *= float(val)
        return self

    def __truediv__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        return self._wrap(self._vals / float(val))

    def __itruediv__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        self._vals /= float(val)
        return self

    def __neg__(self):
        return self._wrap(-self._vals)

    def dot(self, other: "LocalVector") -> float:
        if not isinstance(other, LocalVector):
            raise TypeError(f"dot needs a LocalVector, got {type(other).__name__}")
        b = self._other(other, ".")
        return float(self._vals @ b)

    def norm(self) -> float:
        return float(np.linalg.norm(self._vals))

    def __repr__(self) -> str:
        return f"LocalVector({self._vals.tolist()})"


class LocalMatrix:
    """Dense real matrix with 1-based ``A[i, j]`` and flat ``A[k]`` access.

    Parameters
    ----------
    m, n : int
        Number of rows and columns.
    value : float
        Initial value of every entry.

    Notes
    -----
    ``*`` and ``/`` only accept scalars; matrix-matrix and matrix-vector
    products use ``@`` and require the inner dimensions to agree.
    """

    __slots__ = ("_vals",)

    def __init__(self, m: int = 0, n: int = 0, value: float = 0.0):
        self._vals = np.full((int(m), int(n)), float(value), dtype=float)

    # ------------------------------------------------------------------
    #  construction / conversion
    # ------------------------------------------------------------------
    @classmethod
    def from_numpy(cls, arr) -> "LocalMatrix":
        data = np.asarray(arr, dtype=float)
        if data.ndim != 2:
            raise ConfigurationError(f"LocalMatrix needs a 2-D array, got shape {data.shape}")
        A = cls()
        A._vals = data.copy()
        return A

    @classmethod
    def identity(cls, n: int) -> "LocalMatrix":
        return cls.from_numpy(np.eye(int(n)))

    def to_numpy(self) -> np.ndarray:
        return self._vals.copy()

    def resize(self, m: int, n: int, value: float = 0.0) -> None:
        """Reallocate as an ``m x n`` matrix filled with *value*."""
        self._vals = np.full((int(m), int(n)), float(value), dtype=float)

    def assign(self, other: "LocalMatrix") -> "LocalMatrix":
        """Copy *other* into this matrix.

        An empty matrix adopts the shape of *other*; otherwise the shapes
        must agree.
        """
        if self._vals.size == 0 and self.rows == 0 and self.cols == 0:
            self._vals = other._vals.copy()
            return self
        self._same_shape(other, "=")
        self._vals[...] = other._vals
        return self

    def fill(self, value: float) -> None:
        self._vals.fill(float(value))

    def set_zero(self) -> None:
        self._vals.fill(0.0)

    def set_random(self, seed: Optional[int] = None) -> None:
        rng = np.random.default_rng(seed)
        self._vals[...] = rng.random(self._vals.shape)

    @property
    def rows(self) -> int:
        return self._vals.shape[0]

    @property
    def cols(self) -> int:
        return self._vals.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._vals.shape

    # ------------------------------------------------------------------
    #  1-based access
    # ------------------------------------------------------------------
    def _offset(self, key) -> Tuple[int, int]:
        if isinstance(key, tuple):
            if len(key) != 2:
                raise IndexError(f"LocalMatrix takes (i, j) indices, got {key!r}")
            return (_check_index(key[0], self.rows, "row"),
                    _check_index(key[1], self.cols, "column"))
        k = _check_index(key, self._vals.size, "flat")
        return divmod(k, self.cols)

    def __getitem__(self, key) -> float:
        return float(self._vals[self._offset(key)])

    def __setitem__(self, key, val: float) -> None:
        self._vals[self._offset(key)] = val

    # ------------------------------------------------------------------
    #  arithmetic
    # ------------------------------------------------------------------
    def _same_shape(self, other: "LocalMatrix", op: str) -> None:
        if other.shape != self.shape:
            raise ConfigurationError(
                f"a{op}b can't be applied for two matrices with different size "
                f"({self.rows}x{self.cols} vs {other.rows}x{other.cols})"
            )

    def _operand(self, other, op: str):
        if isinstance(other, LocalMatrix):
            self._same_shape(other, op)
            return other._vals
        if isinstance(other, LocalVector):
            raise ConfigurationError(
                f"a{op}b can't be applied for a {self.rows}x{self.cols} matrix and a "
                f"vector of size {other.size}"
            )
        if isinstance(other, Real):
            return float(other)
        return NotImplemented

    def _wrap(self, vals: np.ndarray) -> "LocalMatrix":
        out = LocalMatrix()
        out._vals = vals
        return out

    def __add__(self, other):
        b = self._operand(other, "+")
        if b is NotImplemented:
            return b
        return self._wrap(self._vals + b)

    __radd__ = __add__

    def __sub__(self, other):
        b = self._operand(other, "-")
        if b is NotImplemented:
            return b
        return self._wrap(self._vals - b)

    def __rsub__(self, other):
        if isinstance(other, Real):
            return self._wrap(float(other) - self._vals)
        return NotImplemented

    def __iadd__(self, other):
        b = self._operand(other, "+")
        if b is NotImplemented:
            return b
        self._vals += b
        return self

    def __isub__(self, other):
        b = self._operand(other, "-")
        if b is NotImplemented:
            return b
        self._vals -= b
        return self

    def __mul__(self, val):
        if isinstance(val, (LocalMatrix, LocalVector)):
            raise TypeError("use '@' for matrix products")
        if not isinstance(val, Real):
            return NotImplemented
        return self._wrap(self._vals * float(val))

    def __rmul__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        return self._wrap(self._vals * float(val))

    def __imul__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        self._vals *= float(val)
        return self

    def __truediv__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        return self._wrap(self._vals / float(val))

    def __itruediv__(self, val):
        if not isinstance(val, Real):
            return NotImplemented
        self._vals /= float(val)
        return self

    def __neg__(self):
        return self._wrap(-self._vals)

    def __matmul__(self, other):
        if isinstance(other, LocalVector):
            if self.cols != other.size:
                raise ConfigurationError(
                    f"A*b needs A's cols ({self.cols}) to match b's size ({other.size})"
                )
            return LocalVector.from_numpy(self._vals @ other._vals)
        if isinstance(other, LocalMatrix):
            if self.cols != other.rows:
                raise ConfigurationError(
                    f"A*B needs A's cols ({self.cols}) to match B's rows ({other.rows})"
                )
            return self._wrap(self._vals @ other._vals)
        return NotImplemented

    def __eq__(self, other) -> bool:
        if not isinstance(other, LocalMatrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._vals, other._vals))

    __hash__ = None

    # ------------------------------------------------------------------
    #  linear algebra
    # ------------------------------------------------------------------
    def transpose(self) -> "LocalMatrix":
        """Return the transpose; this matrix is unchanged."""
        return self._wrap(self._vals.T.copy())

    def transpose_inplace(self) -> None:
        """Transpose this matrix in place (its shape changes accordingly)."""
        self._vals = np.ascontiguousarray(self._vals.T)

    def _require_square(self, what: str) -> None:
        if self.rows != self.cols:
            raise ConfigurationError(
                f"the {what} only works for square matrices, got {self.rows}x{self.cols}"
            )

    def det(self) -> float:
        """Determinant via LU factorisation."""
        self._require_square("determinant")
        return float(np.linalg.det(self._vals))

    def inverse(self) -> "LocalMatrix":
        """Return the inverse; this matrix is unchanged.

        The caller must guarantee the matrix is non-singular.
        """
        self._require_square("inverse operation")
        return self._wrap(np.linalg.inv(self._vals))

    def __repr__(self) -> str:
        return f"LocalMatrix({self.rows}x{self.cols}, {self._vals.tolist()})"
