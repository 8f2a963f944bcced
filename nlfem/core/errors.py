"""nlfem.core.errors
Exception taxonomy shared by the local algebra, materials, BCs and solvers.
"""
from __future__ import annotations

from typing import Optional, Sequence


class ConfigurationError(ValueError):
    """Setup defect: shape mismatch, bad dof id, wrong parameter count, ...

    Never caught inside nlfem. The embedding application decides whether to
    abort or propagate.
    """


class NonConvergenceError(RuntimeError):
    """Nonlinear iteration ended without satisfying any tolerance."""

    def __init__(self, message: str, *, reason=None,
                 residual_norms: Optional[Sequence[float]] = None):
        super().__init__(message)
        self.reason = reason
        self.residual_norms = list(residual_norms or [])


class LinearSolveError(RuntimeError):
    """The inner linear solve failed (singular or ill-conditioned Jacobian)."""
