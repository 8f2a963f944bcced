"""nlfem.solvers
Nonlinear solver orchestrator, line searches and the inner linear solve.
"""
from .parameters import (
    DEFAULT_LINE_SEARCH,
    LinearSolverParameters,
    LineSearchType,
    NonlinearSolverConfig,
    NonlinearSolverType,
)
from .linear import LinearSolver
from .linesearch import LineSearchResult, make_line_search
from .nonlinear_solver import (
    CallbackProblem,
    ConvergedReason,
    NonlinearProblem,
    NonlinearSolver,
    SolveResult,
    SolverState,
)
from .time_stepper import TimeStepperParameters, TransientDriver, TransientResult

__all__ = [
    "DEFAULT_LINE_SEARCH", "LinearSolverParameters", "LineSearchType",
    "NonlinearSolverConfig", "NonlinearSolverType", "LinearSolver",
    "LineSearchResult", "make_line_search", "CallbackProblem", "ConvergedReason",
    "NonlinearProblem", "NonlinearSolver", "SolveResult", "SolverState",
    "TimeStepperParameters", "TransientDriver", "TransientResult",
]
