"""nlfem.bcs.base
Penalty enforcement of Dirichlet constraints on the global system.

Dof ids are 1-based, like node and dof numbering everywhere else in the
assembly layer; they are translated to array offsets only here.

For every constrained dof ``d`` with prescribed value ``u_d``:

* residual:  ``rhs[d] = penalty * (U[d] - u_d)``
* Jacobian:  row and column ``d`` of ``K`` are zeroed, ``K[d, d] = penalty``

so one Newton step moves the dof onto ``u_d`` while the rest of the system
is decoupled from it.  Rows must be modified after all element
contributions have been accumulated.
"""
from __future__ import annotations

import enum
import logging
import warnings
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
import scipy.sparse as sp

from nlfem.core.element import LocalElementInfo
from nlfem.core.errors import ConfigurationError
from nlfem.core.localmatrix import LocalVector

logger = logging.getLogger(__name__)

DEFAULT_PENALTY = 1.0e16


class FECalcType(enum.Enum):
    RESIDUAL = "residual"
    JACOBIAN = "jacobian"


def _dof_offsets(dofs: Sequence[int], ndofs: int) -> np.ndarray:
    """Validate 1-based dof ids and return 0-based offsets."""
    ids = np.asarray(dofs, dtype=int).ravel()
    bad = ids[(ids < 1) | (ids > ndofs)]
    if bad.size:
        raise ConfigurationError(
            f"dof id(s) {bad.tolist()} out of range 1..{ndofs}"
        )
    return ids - 1


def _zero_rows_cols(K, rows: np.ndarray, diag: float) -> None:
    """Zero rows *and* columns of K in place and put *diag* on the diagonal."""
    if isinstance(K, np.ndarray):
        K[rows, :] = 0.0
        K[:, rows] = 0.0
        K[rows, rows] = diag
        return

    if not sp.issparse(K):
        raise ConfigurationError(f"can't apply penalty rows to {type(K).__name__}")

    fmt = K.format
    if fmt in ("csr", "csc"):
        # the same loop clears rows (csr) or columns (csc); the isin mask
        # clears the other direction
        indptr, indices, data = K.indptr, K.indices, K.data
        for r in rows:
            data[indptr[r]:indptr[r + 1]] = 0.0
        data[np.isin(indices, rows)] = 0.0
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", sp.SparseEfficiencyWarning)
            for r in rows:
                K[r, r] = diag
    elif fmt == "lil":
        row_set = set(int(r) for r in rows)
        for i in range(K.shape[0]):
            if i in row_set:
                continue
            cols, vals = K.rows[i], K.data[i]
            for k, j in enumerate(cols):
                if j in row_set:
                    vals[k] = 0.0
        for r in rows:
            K.rows[r] = [int(r)]
            K.data[r] = [diag]
    elif fmt == "dok":
        row_set = set(int(r) for r in rows)
        for (i, j) in list(K.keys()):
            if i in row_set or j in row_set:
                K[i, j] = 0.0
        for r in rows:
            K[r, r] = diag
    else:
        raise ConfigurationError(
            f"penalty rows need a mutable matrix (csr/csc/lil/dok or ndarray), got '{fmt}'"
        )


class DirichletBC(ABC):
    """Base class for penalty-enforced Dirichlet conditions.

    Parameters
    ----------
    dofs : sequence of int
        Constrained global dof ids, 1-based.
    value : float
        The ``bcvalue`` from configuration (a constant, or a scale factor
        for the time/space dependent variants).
    params : sequence of float
        Extra parameters of the variant.
    penalty : float
        Diagonal stiffness placed on constrained rows.  Larger values
        enforce the constraint more tightly but worsen the conditioning of
        the global Jacobian.
    """

    def __init__(self, dofs: Sequence[int], value: float = 0.0,
                 params: Sequence[float] = (), *, penalty: float = DEFAULT_PENALTY):
        ids = np.atleast_1d(np.asarray(dofs, dtype=int))
        if ids.size == 0:
            raise ConfigurationError(f"{type(self).__name__} needs at least one dof")
        if np.any(ids < 1):
            raise ConfigurationError(f"dof ids start from 1, got {ids.tolist()}")
        if not (np.isfinite(penalty) and penalty > 0.0):
            raise ConfigurationError(f"penalty must be positive and finite, got {penalty}")
        self.dofs = tuple(int(i) for i in ids)
        self.value = float(value)
        self.params = tuple(float(p) for p in params)
        self.penalty = float(penalty)

    # ------------------------------------------------------------------
    @abstractmethod
    def compute_u(self, dofs: Sequence[int], bc_value: float, params: Sequence[float],
                  elmt_info: LocalElementInfo, node_coords) -> LocalVector:
        """Prescribed values for *dofs*, in the same order."""

    def compute_bc_value(self, calc_type: FECalcType, bc_value: float,
                         params: Sequence[float], elmt_info: LocalElementInfo,
                         dofs: Sequence[int], node_coords, K, rhs: np.ndarray,
                         U: np.ndarray) -> None:
        """Fold the constraint into ``K`` or ``rhs`` in place."""
        ndofs = len(rhs) if rhs is not None else K.shape[0]
        idx = _dof_offsets(dofs, ndofs)

        if calc_type is FECalcType.RESIDUAL:
            u_bc = self.compute_u(dofs, bc_value, params, elmt_info, node_coords).to_numpy()
            rhs[idx] = self.penalty * (np.asarray(U, dtype=float)[idx] - u_bc)
        elif calc_type is FECalcType.JACOBIAN:
            if K.shape[0] != ndofs or K.shape[1] != ndofs:
                raise ConfigurationError(
                    f"K has shape {K.shape}, expected ({ndofs}, {ndofs})"
                )
            _zero_rows_cols(K, idx, self.penalty)
        else:
            raise ConfigurationError(f"unsupported calculation type {calc_type!r}")

    def apply(self, calc_type: FECalcType, system, elmt_info: LocalElementInfo,
              node_coords=(0.0, 0.0, 0.0)) -> None:
        """Apply this BC to a :class:`~nlfem.assembly.system.GlobalSystem`."""
        self.compute_bc_value(calc_type, self.value, self.params, elmt_info,
                              self.dofs, node_coords, system.K, system.rhs, system.u)

    def prescribed_values(self, elmt_info: LocalElementInfo,
                          node_coords=(0.0, 0.0, 0.0)) -> np.ndarray:
        return self.compute_u(self.dofs, self.value, self.params, elmt_info,
                              node_coords).to_numpy()

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(dofs={list(self.dofs)}, value={self.value}, "
                f"penalty={self.penalty:.1e})")
