"""nlfem.solvers.petsc_snes
Drop-in replacement for :class:`~nlfem.solvers.nonlinear_solver.NonlinearSolver`
that hands the same problem to PETSc SNES.

The configuration is translated once in :meth:`PetscSnesSolver.init`; the
SNES/KSP objects, vectors and matrices are kept and reused for every later
``solve`` of the same size.  petsc4py is optional (``pip install nlfem[petsc]``).
"""
from __future__ import annotations

import logging
import os
import time
from typing import Dict, List, Optional

import numpy as np
import scipy.sparse as sp

from nlfem.core.errors import ConfigurationError
from nlfem.solvers.linear import as_csc
from nlfem.solvers.nonlinear_solver import (
    ConvergedReason,
    NonlinearProblem,
    SolveResult,
    SolverState,
)
from nlfem.solvers.parameters import (
    LineSearchType,
    NonlinearSolverConfig,
    NonlinearSolverType,
)

_skip_petsc = os.getenv("NLFEM_SKIP_PETSC", "").lower() in {"1", "true", "yes"}
if not _skip_petsc:
    try:
        from petsc4py import PETSc
        HAS_PETSC = True
    except ImportError:
        PETSc = None
        HAS_PETSC = False
else:
    PETSc = None
    HAS_PETSC = False

logger = logging.getLogger(__name__)

# solver family -> (snes_type, snes_qn_type)
SNES_TYPES = {
    NonlinearSolverType.NEWTON: ("newtonls", None),
    NonlinearSolverType.NEWTONLS: ("newtonls", None),
    NonlinearSolverType.NEWTONTR: ("newtontr", None),
    NonlinearSolverType.LBFGS: ("qn", "lbfgs"),
    NonlinearSolverType.BROYDEN: ("qn", "broyden"),
    NonlinearSolverType.BADBROYDEN: ("qn", "badbroyden"),
    NonlinearSolverType.NEWTONCG: ("ncg", None),
    NonlinearSolverType.NEWTONGMRES: ("ngmres", None),
}

LINE_SEARCH_NAMES = {
    LineSearchType.BASIC: "basic",
    LineSearchType.BACKTRACE: "bt",
    LineSearchType.CP: "cp",
    LineSearchType.L2: "l2",
}

# SNESConvergedReason integer codes
_PETSC_REASONS = {
    2: ConvergedReason.CONVERGED_FNORM_ABS,
    3: ConvergedReason.CONVERGED_FNORM_RELATIVE,
    4: ConvergedReason.CONVERGED_SNORM_RELATIVE,
    -2: ConvergedReason.DIVERGED_FUNCTION_COUNT,
    -3: ConvergedReason.DIVERGED_LINEAR_SOLVE,
    -4: ConvergedReason.DIVERGED_FNORM_NAN,
    -5: ConvergedReason.DIVERGED_MAX_IT,
    -6: ConvergedReason.DIVERGED_LINE_SEARCH,
    -11: ConvergedReason.DIVERGED_TR_DELTA,
}


def petsc_options_for(config: NonlinearSolverConfig) -> Dict[str, object]:
    """PETSc options database entries equivalent to *config*."""
    snes_type, qn_type = SNES_TYPES[config.solver_type]
    opts: Dict[str, object] = {"snes_type": snes_type}
    if qn_type is not None:
        opts["snes_qn_type"] = qn_type
        opts["snes_qn_m"] = config.lbfgs_history
    if snes_type in ("ncg", "ngmres"):
        # one Newton step as nonlinear preconditioner, as in NonlinearSolver
        opts["npc_snes_type"] = "newtonls"
        opts["npc_snes_max_it"] = 1
        opts["npc_snes_linesearch_type"] = "basic"
    if snes_type == "ngmres":
        opts["snes_ngmres_m"] = config.lbfgs_history
    ls = config.resolved_line_search
    if ls is not LineSearchType.NONE:
        opts["snes_linesearch_type"] = LINE_SEARCH_NAMES[ls]
        opts["snes_linesearch_order"] = config.line_search_order

    lin = config.linear
    if lin.backend == "direct":
        opts["ksp_type"] = "preonly"
    else:
        opts["ksp_type"] = lin.backend
        opts["ksp_gmres_restart"] = lin.restart
    opts["pc_type"] = {"lu": "lu", "ilu": "ilu", "none": "none"}[lin.preconditioner]
    opts["ksp_atol"] = lin.abs_tol
    opts["ksp_rtol"] = lin.rel_tol
    opts["ksp_max_it"] = lin.maxit if lin.maxit is not None else 500_000
    return opts


class PetscSnesSolver:
    """PETSc SNES backed nonlinear solver with the ``init``/``solve`` interface."""

    def __init__(self, config: Optional[NonlinearSolverConfig] = None, *,
                 petsc_options: Optional[Dict] = None):
        if not HAS_PETSC:
            raise RuntimeError("petsc4py is not available; PetscSnesSolver cannot be used.")
        self.state = SolverState.UNCONFIGURED
        self.config: Optional[NonlinearSolverConfig] = None
        self.user_options = dict(petsc_options or {})
        self.petsc_options: Dict[str, object] = {}
        self._snes = None
        self._x = None
        self._r = None
        self._J = None
        self._problem = None
        if config is not None:
            self.init(config)

    def init(self, config: NonlinearSolverConfig) -> "PetscSnesSolver":
        if not isinstance(config, NonlinearSolverConfig):
            raise ConfigurationError(
                f"init expects a NonlinearSolverConfig, got {type(config).__name__}"
            )
        self.config = config
        self.petsc_options = petsc_options_for(config)
        # user options override the translated defaults
        self.petsc_options.update(self.user_options)
        self._snes = None
        self.state = SolverState.READY
        logger.info("PETSc SNES: %s", self.petsc_options)
        return self

    def _apply_petsc_options(self) -> None:
        opts = PETSc.Options()
        for k, v in self.petsc_options.items():
            opts[k.lstrip("-")] = "" if v is None else str(v)

    def _ensure_snes(self, n: int) -> None:
        if self._snes is not None and self._x.getSize() == n:
            return
        comm = PETSc.COMM_SELF
        self._x = PETSc.Vec().createSeq(n, comm=comm)
        self._r = PETSc.Vec().createSeq(n, comm=comm)
        self._J = PETSc.Mat().createAIJ(size=(n, n), comm=comm)
        self._J.setUp()

        self._snes = PETSc.SNES().create(comm=comm)
        self._snes.setFunction(self._eval_residual, self._r)
        self._snes.setJacobian(self._eval_jacobian, self._J, self._J)
        cfg = self.config
        self._snes.setTolerances(rtol=cfg.rel_tol, atol=cfg.abs_tol, stol=cfg.step_tol,
                                 max_it=cfg.max_iters, max_funcs=cfg.max_func_evals)
        self._apply_petsc_options()
        self._snes.setFromOptions()

    # ------------------------------------------------------------------ #
    # SNES callbacks
    # ------------------------------------------------------------------ #
    def _eval_residual(self, snes, x, r):
        F = np.asarray(self._problem.residual(x.getArray(readonly=True).copy()), dtype=float)
        r.setArray(F)
        return 0

    def _eval_jacobian(self, snes, x, J, P):
        A = as_csc(self._problem.jacobian(x.getArray(readonly=True).copy()))
        A = sp.csr_matrix(A)
        A.sort_indices()
        ia = A.indptr.astype(PETSc.IntType, copy=False)
        ja = A.indices.astype(PETSc.IntType, copy=False)
        P.zeroEntries()
        P.setValuesCSR(ia, ja, A.data)
        P.assemblyBegin(); P.assemblyEnd()
        if J.handle != P.handle:
            J.assemblyBegin(); J.assemblyEnd()
        return PETSc.Mat.Structure.SAME_NONZERO_PATTERN

    # ------------------------------------------------------------------ #
    def solve(self, problem: NonlinearProblem, x0) -> SolveResult:
        if self.state is SolverState.UNCONFIGURED or self.config is None:
            raise ConfigurationError("PetscSnesSolver.solve called before init()")
        x0 = np.array(x0, dtype=float, copy=True).ravel()
        prescribe = getattr(problem, "apply_prescribed", None)
        if prescribe is not None:
            x0 = np.array(prescribe(x0), dtype=float).ravel()
        self._problem = problem
        self._ensure_snes(x0.size)

        norms: List[float] = []
        self._snes.setMonitor(lambda snes, it, fnorm: norms.append(float(fnorm)))
        self._x.setArray(x0)

        self.state = SolverState.ITERATING
        t0 = time.perf_counter()
        self._snes.solve(None, self._x)
        self._snes.cancelMonitor()

        code = int(self._snes.getConvergedReason())
        reason = _PETSC_REASONS.get(
            code,
            ConvergedReason.DIVERGED_LINEAR_SOLVE if code < 0 else ConvergedReason.CONVERGED_FNORM_ABS,
        )
        result = SolveResult(
            x=self._x.getArray(readonly=True).copy(),
            reason=reason,
            iterations=int(self._snes.getIterationNumber()),
            residual_norms=norms,
            function_evals=int(self._snes.getFunctionEvaluations()),
            linear_iterations=int(self._snes.getLinearSolveIterations()),
            elapsed=time.perf_counter() - t0,
        )
        self.state = result.state
        logger.info("PETSc SNES %s: %s in %d iteration(s)",
                    self.petsc_options.get("snes_type"), reason.name, result.iterations)
        return result
