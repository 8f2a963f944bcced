"""nlfem.bcs.dirichlet
Constant-value Dirichlet condition.
"""
from nlfem.bcs import register_bc
from nlfem.bcs.base import DirichletBC
from nlfem.core.localmatrix import LocalVector


@register_bc("dirichlet")
class ConstantDirichletBC(DirichletBC):
    """Every constrained dof is driven to ``bc_value``."""

    def compute_u(self, dofs, bc_value, params, elmt_info, node_coords):
        return LocalVector(len(dofs), bc_value)
