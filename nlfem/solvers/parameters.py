"""nlfem.solvers.parameters
Configuration dataclasses for the nonlinear and inner linear solves.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

from nlfem.core.errors import ConfigurationError


class NonlinearSolverType(enum.Enum):
    NEWTON = "newton"               # Newton-Raphson
    NEWTONLS = "newtonls"           # Newton with a globalising line search
    NEWTONTR = "newtontr"           # trust-region Newton
    LBFGS = "lbfgs"
    BROYDEN = "broyden"
    BADBROYDEN = "badbroyden"
    NEWTONCG = "newtoncg"
    NEWTONGMRES = "newtongmres"


class LineSearchType(enum.Enum):
    DEFAULT = "default"
    BASIC = "basic"
    BACKTRACE = "backtrace"
    CP = "cp"
    L2 = "l2"
    NONE = "none"                   # resolved value for trust-region Newton


_SOLVER_ALIASES = {
    "newtonraphson": NonlinearSolverType.NEWTON,
    "nr": NonlinearSolverType.NEWTON,
    "tr": NonlinearSolverType.NEWTONTR,
    "trustregion": NonlinearSolverType.NEWTONTR,
    "bfgs": NonlinearSolverType.LBFGS,
    "ncg": NonlinearSolverType.NEWTONCG,
    "ngmres": NonlinearSolverType.NEWTONGMRES,
}

_LINESEARCH_ALIASES = {
    "bt": LineSearchType.BACKTRACE,
    "backtracking": LineSearchType.BACKTRACE,
}

#: line search used when the caller asks for ``default``
DEFAULT_LINE_SEARCH = {
    NonlinearSolverType.NEWTON: LineSearchType.BASIC,
    NonlinearSolverType.NEWTONLS: LineSearchType.BACKTRACE,
    NonlinearSolverType.NEWTONTR: LineSearchType.NONE,
    NonlinearSolverType.LBFGS: LineSearchType.CP,
    NonlinearSolverType.BROYDEN: LineSearchType.BASIC,
    NonlinearSolverType.BADBROYDEN: LineSearchType.L2,
    NonlinearSolverType.NEWTONCG: LineSearchType.CP,
    NonlinearSolverType.NEWTONGMRES: LineSearchType.L2,
}


def parse_solver_type(name) -> NonlinearSolverType:
    if isinstance(name, NonlinearSolverType):
        return name
    key = str(name).strip().lower().replace("-", "").replace("_", "")
    if key in _SOLVER_ALIASES:
        return _SOLVER_ALIASES[key]
    try:
        return NonlinearSolverType(key)
    except ValueError:
        raise ConfigurationError(
            f"unknown nonlinear solver '{name}', expected one of "
            f"{[t.value for t in NonlinearSolverType]}"
        ) from None


def parse_line_search(name) -> LineSearchType:
    if isinstance(name, LineSearchType):
        return name
    key = str(name).strip().lower()
    if key in _LINESEARCH_ALIASES:
        return _LINESEARCH_ALIASES[key]
    try:
        ls = LineSearchType(key)
    except ValueError:
        ls = None
    if ls is None or ls is LineSearchType.NONE:
        raise ConfigurationError(
            f"unknown line search '{name}', expected default/basic/backtrace/cp/l2"
        )
    return ls


def resolve_line_search(solver_type: NonlinearSolverType,
                        requested: LineSearchType) -> LineSearchType:
    """Concrete line search for a solver family.

    Trust-region Newton has its own step acceptance and never line-searches.
    """
    if solver_type is NonlinearSolverType.NEWTONTR:
        return LineSearchType.NONE
    if requested is LineSearchType.DEFAULT:
        return DEFAULT_LINE_SEARCH[solver_type]
    return requested


@dataclass
class LinearSolverParameters:
    """Inner linear solve settings."""

    backend: str = "direct"             # direct | cg | gmres
    abs_tol: float = 1e-10
    rel_tol: float = 1e-10
    maxit: Optional[int] = None         # None = unbounded
    restart: int = 1200                 # GMRES restart length
    preconditioner: str = "lu"          # lu | ilu | none

    def __post_init__(self):
        self.backend = self.backend.lower()
        self.preconditioner = self.preconditioner.lower()
        if self.backend not in ("direct", "cg", "gmres"):
            raise ConfigurationError(f"unknown linear solver backend '{self.backend}'")
        if self.preconditioner not in ("lu", "ilu", "none"):
            raise ConfigurationError(f"unknown preconditioner '{self.preconditioner}'")
        if self.abs_tol < 0 or self.rel_tol < 0:
            raise ConfigurationError("linear solver tolerances must be non-negative")


@dataclass
class NonlinearSolverConfig:
    """Settings of one nonlinear solve phase.

    A solve ends successfully as soon as one of ``abs_tol`` (on ``||F||``),
    ``rel_tol`` (on ``||F|| / ||F0||``) or ``step_tol`` (on
    ``||dx|| / ||x||``) is met.
    """

    solver_type: NonlinearSolverType = NonlinearSolverType.NEWTON
    line_search: LineSearchType = LineSearchType.DEFAULT
    abs_tol: float = 1e-7
    rel_tol: float = 1e-10
    step_tol: float = 0.0
    max_iters: int = 25
    line_search_order: int = 3          # backtracking: 1 linear, 2 quadratic, 3 cubic
    max_func_evals: int = -1            # -1 = unbounded
    lbfgs_history: int = 10             # quasi-Newton memory, NGMRES mixing window
    trust_radius0: Optional[float] = None
    linear: LinearSolverParameters = field(default_factory=LinearSolverParameters)

    def __post_init__(self):
        self.solver_type = parse_solver_type(self.solver_type)
        self.line_search = parse_line_search(self.line_search)
        if self.max_iters < 1:
            raise ConfigurationError(f"max_iters must be >= 1, got {self.max_iters}")
        if min(self.abs_tol, self.rel_tol, self.step_tol) < 0.0:
            raise ConfigurationError("nonlinear solver tolerances must be non-negative")
        if self.line_search_order not in (1, 2, 3):
            raise ConfigurationError(
                f"line search order must be 1, 2 or 3, got {self.line_search_order}"
            )
        if self.lbfgs_history < 1:
            raise ConfigurationError("lbfgs_history must be >= 1")
        if isinstance(self.linear, Mapping):
            self.linear = LinearSolverParameters(**self.linear)

    @property
    def resolved_line_search(self) -> LineSearchType:
        return resolve_line_search(self.solver_type, self.line_search)

    # keys of the input-file block → dataclass fields
    _BLOCK_KEYS = {
        "type": "solver_type",
        "solver": "solver_type",
        "linesearch": "line_search",
        "abs-tolerance": "abs_tol",
        "rel-tolerance": "rel_tol",
        "s-tolerance": "step_tol",
        "maxiters": "max_iters",
        "max-iteration": "max_iters",
        "linesearch-order": "line_search_order",
        "max-func-evals": "max_func_evals",
        "lbfgs-history": "lbfgs_history",
        "trust-radius": "trust_radius0",
        "linear": "linear",
    }

    @classmethod
    def from_dict(cls, block: Mapping[str, Any]) -> "NonlinearSolverConfig":
        """Build from an input-file style block, e.g.::

            {"type": "newtonls", "linesearch": "bt", "abs-tolerance": 1e-8,
             "maxiters": 30}
        """
        names = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, val in block.items():
            attr = cls._BLOCK_KEYS.get(key.lower(), key if key in names else None)
            if attr is None:
                raise ConfigurationError(f"unknown nonlinear solver option '{key}'")
            kwargs[attr] = val
        return cls(**kwargs)
