"""nlfem.core.element
Read-only context handed to material and boundary-condition evaluators.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from nlfem.core.localmatrix import LocalVector


@dataclass(frozen=True)
class LocalElementInfo:
    """Where and when a single evaluation happens."""
    element_id: int = 1
    dim: int = 1
    measure: float = 0.0            # length / area / volume of the element
    qp_index: int = 1               # integration point, 1-based
    t: float = 0.0                  # current simulation time
    dt: float = 0.0                 # current time increment
    coords: tuple = (0.0, 0.0, 0.0) # physical coordinates of the point


@dataclass
class LocalElementSolution:
    """Per-dof values at the evaluation point for the current and previous step.

    ``u[1]`` is the first local dof.  ``grad_u`` (optional) has one row per
    local dof and three columns (x, y, z).
    """
    u: LocalVector
    u_old: LocalVector
    grad_u: Optional[np.ndarray] = field(default=None)

    @classmethod
    def from_values(cls, u, u_old=None, grad_u=None) -> "LocalElementSolution":
        u = np.atleast_1d(np.asarray(u, dtype=float))
        u_old = u if u_old is None else np.atleast_1d(np.asarray(u_old, dtype=float))
        return cls(LocalVector.from_numpy(u), LocalVector.from_numpy(u_old),
                   None if grad_u is None else np.asarray(grad_u, dtype=float))

    @property
    def ndofs(self) -> int:
        return self.u.size
