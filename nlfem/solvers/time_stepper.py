"""nlfem.solvers.time_stepper
Backward-Euler time loop with step cutback.

The problem seen by :class:`TransientDriver` is a
:class:`~nlfem.solvers.nonlinear_solver.NonlinearProblem` that also offers

    set_time(t, dt)        move the problem to the end of the trial step
    commit(x)              accept ``x`` as the converged state
    apply_prescribed(x)    (optional) write the constrained values at ``t``
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from nlfem.core.errors import ConfigurationError, LinearSolveError, NonConvergenceError
from nlfem.io.output import OutputSystem
from nlfem.solvers.nonlinear_solver import ConvergedReason, SolveResult

logger = logging.getLogger(__name__)


@dataclass
class TimeStepperParameters:
    """Controls the time advancement."""

    dt: float = 1.0                     # initial time-step size
    final_time: float = 1.0
    max_steps: int = 1_000              # accepted steps
    min_dt: float = 1e-10               # give up below this step size
    cutback: float = 0.5                # dt <- cutback * dt after a failed solve

    def __post_init__(self):
        if self.dt <= 0.0 or self.final_time <= 0.0:
            raise ConfigurationError("dt and final_time must be positive")
        if not 0.0 < self.cutback < 1.0:
            raise ConfigurationError(f"cutback must lie in (0, 1), got {self.cutback}")
        if self.min_dt <= 0.0 or self.min_dt > self.dt:
            raise ConfigurationError(f"min_dt must lie in (0, dt], got {self.min_dt}")
        if self.max_steps < 1:
            raise ConfigurationError("max_steps must be >= 1")


@dataclass
class TransientResult:
    x: np.ndarray
    t: float
    steps: int
    cutbacks: int = 0
    times: List[float] = field(default_factory=list)
    output_steps: List[int] = field(default_factory=list)
    solves: List[SolveResult] = field(default_factory=list)
    elapsed: float = 0.0
    completed: bool = False             # False when max_steps ran out first


class TransientDriver:
    """Advance a problem in time with one nonlinear solve per step."""

    def __init__(self, solver, problem, output: Optional[OutputSystem] = None,
                 params: Optional[TimeStepperParameters] = None):
        self.solver = solver
        self.problem = problem
        self.output = output if output is not None else OutputSystem()
        self.params = params or TimeStepperParameters()

    def run(self, x0, t0: float = 0.0) -> TransientResult:
        p = self.params
        x = np.array(x0, dtype=float, copy=True).ravel()
        t, dt = float(t0), p.dt
        res = TransientResult(x=x, t=t, steps=0)
        eps = 1e-12 * max(p.final_time, 1.0)

        t_start = time.perf_counter()
        while t < p.final_time - eps and res.steps < p.max_steps:
            dt_step = min(dt, p.final_time - t)
            t_new = t + dt_step
            self.problem.set_time(t_new, dt_step)
            guess = x
            if hasattr(self.problem, "apply_prescribed"):
                guess = self.problem.apply_prescribed(x)

            sol = self.solver.solve(self.problem, guess)
            res.solves.append(sol)
            if not sol.converged:
                dt = p.cutback * dt_step
                res.cutbacks += 1
                logger.warning("    Rejecting step %d at t = %.4e (%s); reducing dt -> %.3e",
                               res.steps + 1, t_new, sol.reason.name, dt)
                if dt < p.min_dt:
                    msg = f"time step fell below min_dt={p.min_dt:.1e} at t={t:.6e}"
                    if sol.reason is ConvergedReason.DIVERGED_LINEAR_SOLVE:
                        raise LinearSolveError(msg)
                    raise NonConvergenceError(msg, reason=sol.reason,
                                              residual_norms=sol.residual_norms)
                self.problem.set_time(t, dt)
                continue

            x, t = sol.x, t_new
            self.problem.commit(x)
            res.steps += 1
            res.times.append(t)
            logger.info("    Time step %d: t = %.4e, dt = %.3e, %d Newton iteration(s)",
                        res.steps, t, dt_step, sol.iterations)
            if self.output.on_step_accepted(res.steps):
                res.output_steps.append(res.steps)

        res.x, res.t = x, t
        res.completed = t >= p.final_time - eps
        res.elapsed = time.perf_counter() - t_start
        if not res.completed:
            logger.warning("    Stopped after max_steps=%d at t = %.4e < final_time = %.4e",
                           p.max_steps, t, p.final_time)
        return res
