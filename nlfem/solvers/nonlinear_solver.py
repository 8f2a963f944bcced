r"""
nonlinear_solver.py  –  Newton-family driver for nlfem
=====================================================
Solves ``F(x) = 0`` for the global residual produced by an external
assembly.  The problem only has to expose two callbacks::

    problem.residual(x) -> ndarray          F(x)
    problem.jacobian(x) -> matrix           dF/dx (scipy sparse or dense)

The solver is configured once with :meth:`NonlinearSolver.init` and the
same handle (linear solver, line search) is reused for every call to
:meth:`NonlinearSolver.solve`.

Families
--------
newton / newtonls        exact Newton + line search
newtoncg                 nonlinear conjugate gradients (Polak-Ribiere+)
newtongmres              nonlinear GMRES, Anderson mixing over a window of
                         past iterates
newtontr                 dogleg trust region, no line search
lbfgs                    limited-memory BFGS on the inverse Jacobian
broyden / badbroyden     limited-memory (good / bad) Broyden updates

Quasi-Newton updates sit on top of an LU factorisation of the Jacobian at
the last restart point.  NCG and NGMRES are preconditioned by one Newton
step: they work on ``z = J^{-1} F`` instead of the raw residual, solved with
whatever inner backend the configuration names.

Problems that expose ``apply_prescribed(x)`` get the initial guess projected
onto their prescribed values before the first residual is taken, so penalty
rows never dominate ``||F0||``.

Non-convergence never raises: :class:`SolveResult` reports the reason and
the residual-norm history so the time-stepping driver can cut back.
"""
from __future__ import annotations

import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

import numpy as np

from nlfem.core.errors import ConfigurationError, LinearSolveError, NonConvergenceError
from nlfem.solvers.linear import LinearSolver, as_csc, factorize
from nlfem.solvers.linesearch import LineSearch, make_line_search
from nlfem.solvers.parameters import (
    LineSearchType,
    NonlinearSolverConfig,
    NonlinearSolverType,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
#  Problem protocol
# ----------------------------------------------------------------------------
class NonlinearProblem(Protocol):
    def residual(self, x: np.ndarray) -> np.ndarray: ...

    def jacobian(self, x: np.ndarray): ...


class CallbackProblem:
    """Adapt two plain callables to the :class:`NonlinearProblem` protocol."""

    def __init__(self, residual: Callable, jacobian: Callable):
        self._residual = residual
        self._jacobian = jacobian

    def residual(self, x):
        return np.atleast_1d(np.asarray(self._residual(x), dtype=float))

    def jacobian(self, x):
        return self._jacobian(x)


# ----------------------------------------------------------------------------
#  Result types
# ----------------------------------------------------------------------------
class ConvergedReason(enum.Enum):
    CONVERGED_FNORM_ABS = 2
    CONVERGED_FNORM_RELATIVE = 3
    CONVERGED_SNORM_RELATIVE = 4
    DIVERGED_FUNCTION_COUNT = -2
    DIVERGED_LINEAR_SOLVE = -3
    DIVERGED_FNORM_NAN = -4
    DIVERGED_MAX_IT = -5
    DIVERGED_LINE_SEARCH = -6
    DIVERGED_TR_DELTA = -7
    ITERATING = 0

    @property
    def converged(self) -> bool:
        return self.value > 0


class SolverState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITERATIONS_REACHED = "max-iterations-reached"


@dataclass
class SolveResult:
    x: np.ndarray
    reason: ConvergedReason
    iterations: int
    residual_norms: List[float] = field(default_factory=list)
    function_evals: int = 0
    jacobian_evals: int = 0
    linear_iterations: int = 0
    elapsed: float = 0.0

    @property
    def converged(self) -> bool:
        return self.reason.converged

    @property
    def state(self) -> SolverState:
        if self.reason.converged:
            return SolverState.CONVERGED
        if self.reason is ConvergedReason.DIVERGED_MAX_IT:
            return SolverState.MAX_ITERATIONS_REACHED
        return SolverState.DIVERGED

    def raise_for_status(self) -> "SolveResult":
        """Raise for a failed solve, return self otherwise."""
        if self.converged:
            return self
        if self.reason is ConvergedReason.DIVERGED_LINEAR_SOLVE:
            raise LinearSolveError(
                f"linear solve failed after {self.iterations} nonlinear iterations"
            )
        raise NonConvergenceError(
            f"nonlinear solve failed: {self.reason.name} after {self.iterations} iterations",
            reason=self.reason, residual_norms=self.residual_norms,
        )


class _Counted:
    """Residual/Jacobian evaluation counter around a problem."""

    def __init__(self, problem):
        self.problem = problem
        self.nfev = 0
        self.njev = 0

    def residual(self, x):
        self.nfev += 1
        return np.atleast_1d(np.asarray(self.problem.residual(x), dtype=float))

    def jacobian(self, x):
        self.njev += 1
        J = self.problem.jacobian(x)
        if not hasattr(J, "shape") or len(getattr(J, "shape", ())) != 2:
            J = np.atleast_2d(np.asarray(J, dtype=float))
        return J


def polak_ribiere(z: np.ndarray, F: np.ndarray, z_old: np.ndarray,
                  F_old: np.ndarray) -> float:
    """PR+ coefficient for the preconditioned residuals ``z`` of ``F``, clipped at 0."""
    denom = float(z_old @ F_old)
    if denom == 0.0 or not np.isfinite(denom):
        return 0.0
    return max(float(z @ (F - F_old)) / denom, 0.0)


class _Stop(Exception):
    """Internal: terminate the iteration with a reason."""

    def __init__(self, reason: ConvergedReason):
        self.reason = reason


# ----------------------------------------------------------------------------
#  Solver
# ----------------------------------------------------------------------------
class NonlinearSolver:
    r"""Configurable Newton / quasi-Newton driver.

    Usage::

        solver = NonlinearSolver()
        solver.init(NonlinearSolverConfig(solver_type="newtonls"))
        result = solver.solve(problem, x0)
    """

    def __init__(self, config: Optional[NonlinearSolverConfig] = None):
        self.state = SolverState.UNCONFIGURED
        self.config: Optional[NonlinearSolverConfig] = None
        self.linear: Optional[LinearSolver] = None
        self.line_search: Optional[LineSearch] = None
        self.line_search_type = LineSearchType.NONE
        self.monitors: List[Callable[[int, float], None]] = []
        if config is not None:
            self.init(config)

    # ------------------------------------------------------------------
    #  Configuration
    # ------------------------------------------------------------------
    def init(self, config: NonlinearSolverConfig) -> "NonlinearSolver":
        if not isinstance(config, NonlinearSolverConfig):
            raise ConfigurationError(
                f"init expects a NonlinearSolverConfig, got {type(config).__name__}"
            )
        stype = config.solver_type
        linear_params = config.linear

        self.config = config
        self.linear = LinearSolver(linear_params)
        self.line_search_type = config.resolved_line_search
        self.line_search = make_line_search(self.line_search_type,
                                            order=config.line_search_order)
        self.state = SolverState.READY
        logger.info(
            "Nonlinear solver: %s, line search: %s, inner solve: %s/%s, "
            "atol=%.1e rtol=%.1e stol=%.1e max_iters=%d",
            stype.value, self.line_search_type.value, linear_params.backend,
            linear_params.preconditioner, config.abs_tol, config.rel_tol,
            config.step_tol, config.max_iters,
        )
        return self

    def add_monitor(self, monitor: Callable[[int, float], None]) -> None:
        """Call ``monitor(iteration, residual_norm)`` after every iteration."""
        self.monitors.append(monitor)

    # ------------------------------------------------------------------
    #  Public interface
    # ------------------------------------------------------------------
    def solve(self, problem: NonlinearProblem, x0) -> SolveResult:
        if self.state is SolverState.UNCONFIGURED or self.config is None:
            raise ConfigurationError("NonlinearSolver.solve called before init()")

        cfg = self.config
        prob = _Counted(problem)
        x = np.array(x0, dtype=float, copy=True).ravel()
        prescribe = getattr(problem, "apply_prescribed", None)
        if prescribe is not None:
            x = np.array(prescribe(x), dtype=float).ravel()
        norms: List[float] = []
        self.state = SolverState.ITERATING
        lin_start = self.linear.total_iterations
        t0 = time.perf_counter()

        stype = cfg.solver_type
        if stype is NonlinearSolverType.NEWTONTR:
            loop = self._trust_region_loop
        elif stype in (NonlinearSolverType.LBFGS, NonlinearSolverType.BROYDEN,
                       NonlinearSolverType.BADBROYDEN):
            loop = self._quasi_newton_loop
        elif stype is NonlinearSolverType.NEWTONCG:
            loop = self._ncg_loop
        elif stype is NonlinearSolverType.NEWTONGMRES:
            loop = self._ngmres_loop
        else:
            loop = self._newton_loop

        self._last_x = x
        try:
            for _, x in loop(prob, x, norms):
                pass
            reason = ConvergedReason.DIVERGED_MAX_IT
        except _Stop as stop:
            reason = stop.reason
            x = self._last_x

        result = SolveResult(
            x=x,
            reason=reason,
            iterations=max(len(norms) - 1, 0),
            residual_norms=norms,
            function_evals=prob.nfev,
            jacobian_evals=prob.njev,
            linear_iterations=self.linear.total_iterations - lin_start,
            elapsed=time.perf_counter() - t0,
        )
        self.state = result.state
        if result.converged:
            logger.info("%s converged: %s in %d iteration(s), |R| = %.3e",
                        stype.value, reason.name, result.iterations, norms[-1])
        else:
            logger.warning("%s failed: %s after %d iteration(s), |R| = %.3e",
                           stype.value, reason.name, result.iterations,
                           norms[-1] if norms else float("nan"))
        return result

    # ------------------------------------------------------------------
    #  Shared helpers
    # ------------------------------------------------------------------
    def _record(self, norms: List[float], x: np.ndarray, fnorm: float) -> None:
        self._last_x = x
        norms.append(fnorm)
        it = len(norms) - 1
        logger.info("        %s %d: |R| = %.3e", self.config.solver_type.value, it, fnorm)
        for mon in self.monitors:
            mon(it, fnorm)
        if not np.isfinite(fnorm):
            raise _Stop(ConvergedReason.DIVERGED_FNORM_NAN)

    def _check_initial(self, norms, x, fnorm) -> None:
        self._record(norms, x, fnorm)
        if fnorm < self.config.abs_tol:
            raise _Stop(ConvergedReason.CONVERGED_FNORM_ABS)

    def _check_converged(self, prob: _Counted, norms, x, fnorm, snorm) -> None:
        cfg = self.config
        self._record(norms, x, fnorm)
        if fnorm < cfg.abs_tol:
            raise _Stop(ConvergedReason.CONVERGED_FNORM_ABS)
        if fnorm < cfg.rel_tol * norms[0]:
            raise _Stop(ConvergedReason.CONVERGED_FNORM_RELATIVE)
        if snorm < cfg.step_tol * np.linalg.norm(x):
            raise _Stop(ConvergedReason.CONVERGED_SNORM_RELATIVE)
        if 0 <= cfg.max_func_evals <= prob.nfev:
            raise _Stop(ConvergedReason.DIVERGED_FUNCTION_COUNT)

    def _linear_solve(self, J, rhs):
        try:
            return self.linear.solve(J, rhs)
        except LinearSolveError as exc:
            logger.warning("        linear solve failed: %s", exc)
            raise _Stop(ConvergedReason.DIVERGED_LINEAR_SOLVE) from exc

    def _search(self, prob, x, F, d, J):
        ls = self.line_search.apply(prob.residual, x, F, d, J)
        if not ls.success:
            self._last_x = x
            if not np.isfinite(ls.fnorm):
                raise _Stop(ConvergedReason.DIVERGED_FNORM_NAN)
            raise _Stop(ConvergedReason.DIVERGED_LINE_SEARCH)
        return ls

    # ------------------------------------------------------------------
    #  Newton + line search
    # ------------------------------------------------------------------
    def _newton_loop(self, prob: _Counted, x, norms):
        F = prob.residual(x)
        self._check_initial(norms, x, float(np.linalg.norm(F)))
        for it in range(1, self.config.max_iters + 1):
            J = prob.jacobian(x)
            dx = self._linear_solve(J, -F)
            ls = self._search(prob, x, F, dx, J)
            snorm = float(np.linalg.norm(ls.x - x))
            x, F = ls.x, ls.F
            self._check_converged(prob, norms, x, ls.fnorm, snorm)
            yield it, x

    # ------------------------------------------------------------------
    #  Nonlinear CG
    # ------------------------------------------------------------------
    def _ncg_loop(self, prob: _Counted, x, norms):
        F = prob.residual(x)
        self._check_initial(norms, x, float(np.linalg.norm(F)))
        d = z_old = F_old = None
        for it in range(1, self.config.max_iters + 1):
            J = prob.jacobian(x)
            z = self._linear_solve(J, F)
            beta = 0.0 if d is None else polak_ribiere(z, F, z_old, F_old)
            d = -z if beta == 0.0 else -z + beta * d
            if beta > 0.0 and float(d @ F) >= 0.0:
                logger.debug("        ncg: lost descent at iteration %d, restarting", it)
                d = -z
            ls = self._search(prob, x, F, d, J)
            snorm = float(np.linalg.norm(ls.x - x))
            z_old, F_old = z, F
            x, F = ls.x, ls.F
            self._check_converged(prob, norms, x, ls.fnorm, snorm)
            yield it, x

    # ------------------------------------------------------------------
    #  Nonlinear GMRES (Anderson mixing of Newton-preconditioned steps)
    # ------------------------------------------------------------------
    def _ngmres_loop(self, prob: _Counted, x, norms):
        F = prob.residual(x)
        self._check_initial(norms, x, float(np.linalg.norm(F)))
        window = min(self.config.lbfgs_history, x.size)
        dX: deque = deque(maxlen=window)
        dR: deque = deque(maxlen=window)
        x_prev = r_prev = None
        for it in range(1, self.config.max_iters + 1):
            J = prob.jacobian(x)
            r = -self._linear_solve(J, F)
            if r_prev is not None:
                dX.append(x - x_prev)
                dR.append(r - r_prev)
            d = r
            if dR:
                DX, DR = np.column_stack(dX), np.column_stack(dR)
                gamma = np.linalg.lstsq(DR, r, rcond=None)[0]
                d = r - (DX + DR) @ gamma
                if not np.all(np.isfinite(d)):
                    logger.debug("        ngmres: mixing failed at iteration %d, restarting", it)
                    dX.clear()
                    dR.clear()
                    d = r
            ls = self._search(prob, x, F, d, J)
            snorm = float(np.linalg.norm(ls.x - x))
            x_prev, r_prev = x, r
            x, F = ls.x, ls.F
            self._check_converged(prob, norms, x, ls.fnorm, snorm)
            yield it, x

    # ------------------------------------------------------------------
    #  Trust-region Newton (dogleg)
    # ------------------------------------------------------------------
    _TR_SHRINK, _TR_GROW = 0.25, 2.0
    _TR_ETA = 1e-4

    @staticmethod
    def _dogleg(p_newton, g, Jg, delta):
        pn = np.linalg.norm(p_newton)
        if pn <= delta:
            return p_newton
        gg = float(g @ g)
        JgJg = float(Jg @ Jg)
        if gg == 0.0 or JgJg == 0.0:
            return p_newton * (delta / pn)
        p_cauchy = -(gg / JgJg) * g
        pc = np.linalg.norm(p_cauchy)
        if pc >= delta:
            return -(delta / np.sqrt(gg)) * g
        # ||p_c + tau (p_n - p_c)|| = delta, tau in [0, 1]
        v = p_newton - p_cauchy
        a = float(v @ v)
        b = 2.0 * float(p_cauchy @ v)
        c = pc * pc - delta * delta
        tau = (-b + np.sqrt(b * b - 4.0 * a * c)) / (2.0 * a)
        return p_cauchy + tau * v

    def _trust_region_loop(self, prob: _Counted, x, norms):
        cfg = self.config
        F = prob.residual(x)
        fnorm = float(np.linalg.norm(F))
        self._check_initial(norms, x, fnorm)
        delta = cfg.trust_radius0

        for it in range(1, cfg.max_iters + 1):
            J = prob.jacobian(x)
            Jc = as_csc(J)
            p_newton = self._linear_solve(J, -F)
            if delta is None:
                delta = max(float(np.linalg.norm(p_newton)), 1e-12)
            g = Jc.T @ F
            Jg = Jc @ g
            f0 = 0.5 * fnorm * fnorm

            while True:
                p = self._dogleg(p_newton, g, Jg, delta)
                r_lin = F + Jc @ p
                pred = f0 - 0.5 * float(r_lin @ r_lin)
                x_t = x + p
                F_t = prob.residual(x_t)
                fn_t = float(np.linalg.norm(F_t))
                ared = f0 - 0.5 * fn_t * fn_t if np.isfinite(fn_t) else -np.inf
                rho = ared / pred if pred > 0.0 else -1.0
                pnorm = float(np.linalg.norm(p))

                if rho < 0.25:
                    delta = self._TR_SHRINK * pnorm
                elif rho > 0.75 and pnorm >= 0.99 * delta:
                    delta = self._TR_GROW * delta
                logger.debug("        trust region: rho = %.3e, delta = %.3e", rho, delta)

                if rho > self._TR_ETA:
                    break
                if delta < 1e-12 * (1.0 + np.linalg.norm(x)):
                    self._last_x = x
                    raise _Stop(ConvergedReason.DIVERGED_TR_DELTA)

            snorm = pnorm
            x, F, fnorm = x_t, F_t, fn_t
            self._check_converged(prob, norms, x, fnorm, snorm)
            yield it, x

    # ------------------------------------------------------------------
    #  Quasi-Newton: L-BFGS, Broyden, bad Broyden
    # ------------------------------------------------------------------
    def _quasi_newton_loop(self, prob: _Counted, x, norms):
        cfg = self.config
        kind = cfg.solver_type
        F = prob.residual(x)
        self._check_initial(norms, x, float(np.linalg.norm(F)))

        def restart(x_now):
            try:
                return factorize(prob.jacobian(x_now))
            except LinearSolveError as exc:
                logger.warning("        quasi-Newton restart failed: %s", exc)
                raise _Stop(ConvergedReason.DIVERGED_LINEAR_SOLVE) from exc

        lu0 = restart(x)
        hist: list = []

        def apply_H(q):
            if kind is NonlinearSolverType.LBFGS:
                q = q.copy()
                alphas = []
                for s, y, rho in reversed(hist):
                    a = rho * float(s @ q)
                    q -= a * y
                    alphas.append(a)
                r = lu0.solve(q)
                for (s, y, rho), a in zip(hist, reversed(alphas)):
                    b = rho * float(y @ r)
                    r += (a - b) * s
                return r
            r = lu0.solve(q)
            for u, v in hist:
                r += u * float(v @ q)
            return r

        def apply_HT(q):
            r = lu0.solve(q, trans="T")
            for u, v in hist:
                r += v * float(u @ q)
            return r

        for it in range(1, cfg.max_iters + 1):
            d = -apply_H(F)
            if not np.all(np.isfinite(d)):
                hist.clear()
                lu0 = restart(x)
                d = -lu0.solve(F)

            ls = self._search(prob, x, F, d, None)
            s = ls.x - x
            y = ls.F - F
            snorm = float(np.linalg.norm(s))

            ok = True
            if kind is NonlinearSolverType.LBFGS:
                sy = float(s @ y)
                if sy > 1e-12 * snorm * np.linalg.norm(y):
                    hist.append((s, y, 1.0 / sy))
                else:
                    ok = False
            else:
                Hy = apply_H(y)
                if kind is NonlinearSolverType.BROYDEN:
                    v = apply_HT(s)
                    denom = float(v @ y)
                else:
                    v = y
                    denom = float(y @ y)
                if abs(denom) > 1e-14 * max(snorm * np.linalg.norm(y), 1e-300):
                    hist.append(((s - Hy) / denom, v))
                else:
                    ok = False

            x, F = ls.x, ls.F
            self._check_converged(prob, norms, x, ls.fnorm, snorm)
            if not ok or len(hist) >= cfg.lbfgs_history:
                logger.debug("        quasi-Newton restart at iteration %d", it)
                hist.clear()
                lu0 = restart(x)
            yield it, x
