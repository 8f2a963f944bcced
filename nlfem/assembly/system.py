"""nlfem.assembly.system
Global system container and a minimal 1-D mesh generator.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
import scipy.sparse as sp

from nlfem.core.errors import ConfigurationError


class GlobalSystem:
    """Global Jacobian ``K``, residual ``rhs`` and solution ``u``.

    ``K`` is a LIL matrix while contributions are scattered; call
    :meth:`finalize` for a CSR copy to hand to the linear solver.
    """

    def __init__(self, ndofs: int):
        if ndofs < 1:
            raise ConfigurationError(f"global system needs at least one dof, got {ndofs}")
        self.ndofs = int(ndofs)
        self.K = sp.lil_matrix((self.ndofs, self.ndofs))
        self.rhs = np.zeros(self.ndofs)
        self.u = np.zeros(self.ndofs)

    def reset(self, need_matrix: bool = True) -> None:
        if need_matrix:
            self.K = sp.lil_matrix((self.ndofs, self.ndofs))
        self.rhs[:] = 0.0

    def scatter(self, dofs, Ke=None, Fe=None) -> None:
        """Add element contributions; *dofs* are 1-based global ids."""
        idx = np.asarray(dofs, dtype=int) - 1
        if Fe is not None:
            np.add.at(self.rhs, idx, Fe)
        if Ke is not None:
            for a, A in enumerate(idx):
                for b, B in enumerate(idx):
                    self.K[A, B] += Ke[a, b]

    def finalize(self) -> sp.csr_matrix:
        return self.K.tocsr()


def line_mesh(n_elements: int, x0: float = 0.0, x1: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Uniform two-node elements on ``[x0, x1]``.

    Returns node coordinates ``(n_elements + 1,)`` and connectivity
    ``(n_elements, 2)`` holding 1-based node ids.
    """
    if n_elements < 1:
        raise ConfigurationError(f"n_elements must be >= 1, got {n_elements}")
    if not x1 > x0:
        raise ConfigurationError(f"empty interval [{x0}, {x1}]")
    coords = np.linspace(x0, x1, n_elements + 1)
    conn = np.column_stack([np.arange(1, n_elements + 1), np.arange(2, n_elements + 2)])
    return coords, conn
