"""nlfem.bcs.function
Dirichlet condition given by a callable of position and time.
"""
from __future__ import annotations

import inspect
from typing import Callable

from nlfem.bcs import register_bc
from nlfem.bcs.base import DirichletBC
from nlfem.core.errors import ConfigurationError
from nlfem.core.localmatrix import LocalVector


@register_bc("function")
class FunctionDirichletBC(DirichletBC):
    """Prescribed value ``bc_value * func(x, y, z, t)`` at the node."""

    def __init__(self, dofs, func: Callable, value=1.0, params=(), **kwargs):
        if not callable(func):
            raise ConfigurationError(f"FunctionDirichletBC needs a callable, got {func!r}")
        if len(inspect.signature(func).parameters) != 4:
            raise ConfigurationError("FunctionDirichletBC callable must take (x, y, z, t)")
        super().__init__(dofs, value, params, **kwargs)
        self.func = func

    def compute_u(self, dofs, bc_value, params, elmt_info, node_coords):
        x, y, z = (tuple(node_coords) + (0.0, 0.0, 0.0))[:3]
        return LocalVector(len(dofs), bc_value * float(self.func(x, y, z, elmt_info.t)))
