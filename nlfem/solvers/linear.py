"""nlfem.solvers.linear
Inner linear solve ``J dx = -F`` for the Newton-family solvers.

``direct`` factorises with SuperLU; ``cg`` and ``gmres`` run scipy's Krylov
solvers preconditioned by an LU (default) or incomplete LU factorisation.
Every failure is raised as :class:`~nlfem.core.errors.LinearSolveError` so
the nonlinear driver can tell it apart from slow convergence.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from nlfem.core.errors import LinearSolveError
from nlfem.solvers.parameters import LinearSolverParameters

logger = logging.getLogger(__name__)

_UNBOUNDED_ITERS = 500_000


def as_csc(A) -> sp.csc_matrix:
    if sp.issparse(A):
        return sp.csc_matrix(A)
    arr = np.asarray(A, dtype=float)
    if arr.ndim == 0:
        arr = arr.reshape(1, 1)
    return sp.csc_matrix(arr)


def factorize(A) -> spla.SuperLU:
    """LU factorisation, raising LinearSolveError on a singular matrix."""
    A = as_csc(A)
    if A.shape[0] != A.shape[1]:
        raise LinearSolveError(f"Jacobian must be square, got {A.shape}")
    try:
        return spla.splu(A)
    except RuntimeError as exc:        # "Factor is exactly singular"
        raise LinearSolveError(f"LU factorisation failed: {exc}") from exc


class LinearSolver:
    """Reusable linear-solve handle configured once per simulation phase."""

    def __init__(self, params: Optional[LinearSolverParameters] = None):
        self.params = params or LinearSolverParameters()
        self.last_iterations = 0
        self.total_iterations = 0

    def _preconditioner(self, A: sp.csc_matrix):
        kind = self.params.preconditioner
        if kind == "none":
            return None
        if kind == "lu":
            lu = factorize(A)
        else:
            try:
                lu = spla.spilu(A)
            except RuntimeError as exc:
                raise LinearSolveError(f"ILU factorisation failed: {exc}") from exc
        return spla.LinearOperator(A.shape, matvec=lu.solve, dtype=float)

    def solve(self, A, b: np.ndarray) -> np.ndarray:
        """Return x with ``A x = b``."""
        A = as_csc(A)
        b = np.asarray(b, dtype=float).ravel()
        if A.shape[0] != b.size:
            raise LinearSolveError(f"matrix {A.shape} and rhs ({b.size},) don't match")

        p = self.params
        if p.backend == "direct":
            x = factorize(A).solve(b)
            self.last_iterations = 1
        else:
            its = [0]

            def _count(arg):
                its[0] += 1
                # cg on an indefinite or nonsymmetric matrix runs on NaNs otherwise
                if not np.all(np.isfinite(arg)):
                    self.last_iterations = its[0]
                    raise LinearSolveError(
                        f"{p.backend} broke down after {its[0]} iteration(s)"
                    )

            M = self._preconditioner(A)
            maxiter = p.maxit if p.maxit is not None else _UNBOUNDED_ITERS
            if p.backend == "cg":
                x, info = spla.cg(A, b, rtol=p.rel_tol, atol=p.abs_tol,
                                  maxiter=maxiter, M=M, callback=_count)
            else:
                x, info = spla.gmres(A, b, rtol=p.rel_tol, atol=p.abs_tol,
                                     restart=p.restart, maxiter=maxiter, M=M,
                                     callback=_count, callback_type="pr_norm")
            self.last_iterations = its[0]
            if info != 0:
                raise LinearSolveError(
                    f"{p.backend} did not converge (info={info}, {its[0]} iterations)"
                )

        if not np.all(np.isfinite(x)):
            raise LinearSolveError("linear solve produced non-finite values")
        self.total_iterations += self.last_iterations
        logger.debug("linear solve (%s): %d iteration(s)", p.backend, self.last_iterations)
        return x
