r"""nlfem.assembly.phasefield
Reference 1-D Allen-Cahn assembly driving the free-energy materials and the
Dirichlet enforcers.

Weak form per element, with linear shape functions ``N`` and 2-point Gauss
quadrature::

    R_a = \int (c - c_old)/dt N_a + M (dF/dc N_a + kappa c' N_a') dx
    K_ab = \int N_a N_b / dt + M (d2F/dc2 N_a N_b + kappa N_a' N_b') dx

With ``dt=None`` the transient term is dropped (steady problem).  Constrained
rows are rewritten by the boundary conditions after every element has been
scattered.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from numpy.polynomial.legendre import leggauss

from nlfem.assembly.system import GlobalSystem
from nlfem.bcs.base import DirichletBC, FECalcType
from nlfem.core.element import LocalElementInfo, LocalElementSolution
from nlfem.core.errors import ConfigurationError
from nlfem.core.localmatrix import LocalMatrix, LocalVector
from nlfem.materials.base import FreeEnergyMaterial, Materials

logger = logging.getLogger(__name__)

N_QP = 2


class MaterialHandler:
    """Committed ("old") and trial ("current") responses per integration point."""

    def __init__(self, material: FreeEnergyMaterial, params, n_elements: int,
                 n_qp: int = N_QP):
        self.material = material
        # fail before any solve starts
        self.params = material.validate_params(params)
        self.n_elements = n_elements
        self.n_qp = n_qp
        self.old: List[List[Materials]] = []
        self.current: List[List[Materials]] = []

    def init(self, elmt_info: LocalElementInfo, elmt_soln: LocalElementSolution) -> None:
        seed = self.material.init_material_properties(self.params, elmt_info, elmt_soln)
        self.old = [[seed.copy() for _ in range(self.n_qp)] for _ in range(self.n_elements)]
        self.current = [[seed.copy() for _ in range(self.n_qp)] for _ in range(self.n_elements)]

    def compute(self, e: int, q: int, elmt_info: LocalElementInfo,
                elmt_soln: LocalElementSolution) -> Materials:
        mate = self.material.compute_material_properties(
            self.params, elmt_info, elmt_soln, self.old[e][q]
        )
        self.current[e][q] = mate
        return mate

    def commit(self) -> None:
        self.old = [[m.copy() for m in row] for row in self.current]


class PhaseField1D:
    """Allen-Cahn problem on a 1-D two-node mesh.

    Parameters
    ----------
    mesh_coords : (n_nodes,) array
    connectivity : (n_elements, 2) int array of 1-based node ids
    material : FreeEnergyMaterial
    params : sequence of float
        Material parameters, validated immediately.
    kappa, mobility : float
        Gradient energy coefficient and mobility ``M``.
    bcs : sequence of DirichletBC
        Dof id == node id (one scalar field).
    dt : float or None
        Time increment; ``None`` solves the steady problem.
    """

    def __init__(self, mesh_coords, connectivity, material: FreeEnergyMaterial, params,
                 kappa: float, mobility: float = 1.0,
                 bcs: Sequence[DirichletBC] = (), dt: Optional[float] = None):
        self.coords = np.asarray(mesh_coords, dtype=float).ravel()
        self.conn = np.asarray(connectivity, dtype=int)
        if self.conn.ndim != 2 or self.conn.shape[1] != 2:
            raise ConfigurationError(
                f"connectivity must have shape (n_elements, 2), got {self.conn.shape}"
            )
        n_nodes = self.coords.size
        if self.conn.min() < 1 or self.conn.max() > n_nodes:
            raise ConfigurationError(f"connectivity refers to nodes outside 1..{n_nodes}")
        if dt is not None and dt <= 0.0:
            raise ConfigurationError(f"dt must be positive, got {dt}")

        self.kappa = float(kappa)
        self.mobility = float(mobility)
        self.bcs = list(bcs)
        for bc in self.bcs:
            if max(bc.dofs) > n_nodes:
                raise ConfigurationError(f"{bc!r} constrains dofs beyond {n_nodes}")
        self.t = 0.0
        self.dt = dt

        self.system = GlobalSystem(n_nodes)
        self.u_old = np.zeros(n_nodes)
        self.qp, self.qw = leggauss(N_QP)
        self.materials = MaterialHandler(material, params, len(self.conn), N_QP)
        self.materials.init(self._info(0, 0, 0.0),
                            LocalElementSolution.from_values([0.0]))

    @property
    def ndofs(self) -> int:
        return self.system.ndofs

    def _info(self, e: int, q: int, x: float, h: float = 0.0) -> LocalElementInfo:
        return LocalElementInfo(element_id=e + 1, dim=1, measure=h, qp_index=q + 1,
                                t=self.t, dt=self.dt or 0.0, coords=(x, 0.0, 0.0))

    # ------------------------------------------------------------------
    #  Time and history
    # ------------------------------------------------------------------
    def set_time(self, t: float, dt: Optional[float] = None) -> None:
        self.t = float(t)
        if dt is not None:
            if dt <= 0.0:
                raise ConfigurationError(f"dt must be positive, got {dt}")
            self.dt = float(dt)

    def set_initial_condition(self, u0) -> None:
        u0 = np.asarray(u0, dtype=float).ravel()
        if u0.size != self.ndofs:
            raise ConfigurationError(f"initial condition has {u0.size} values, expected {self.ndofs}")
        self.u_old = u0.copy()
        self.system.u = u0.copy()

    def apply_prescribed(self, x) -> np.ndarray:
        """Copy of *x* with the constrained dofs set to their values at ``t``."""
        x = np.array(x, dtype=float, copy=True)
        info = self._info(0, 0, 0.0)
        for bc in self.bcs:
            for d in bc.dofs:
                node = (self.coords[d - 1], 0.0, 0.0)
                x[d - 1] = bc.compute_u((d,), bc.value, bc.params, info, node)[1]
        return x

    def commit(self, x) -> None:
        """Accept *x* as converged: promote the materials evaluated at *x*."""
        self._assemble(np.asarray(x, dtype=float), need_matrix=False)
        self.materials.commit()
        self.u_old = np.array(x, dtype=float, copy=True)
        self.system.u = self.u_old.copy()
        logger.debug("committed state at t = %.4e", self.t)

    # ------------------------------------------------------------------
    #  NonlinearProblem protocol
    # ------------------------------------------------------------------
    def residual(self, x):
        self._assemble(np.asarray(x, dtype=float), need_matrix=False)
        return self.system.rhs.copy()

    def jacobian(self, x):
        self._assemble(np.asarray(x, dtype=float), need_matrix=True)
        return self.system.finalize()

    # ------------------------------------------------------------------
    def _element(self, e: int, nodes: np.ndarray, x: np.ndarray, need_matrix: bool):
        xe = self.coords[nodes - 1]
        h = xe[1] - xe[0]
        if h <= 0.0:
            raise ConfigurationError(f"element {e + 1} has non-positive length {h}")
        detJ = 0.5 * h
        B = np.array([-1.0, 1.0]) / h
        ue, ue_old = x[nodes - 1], self.u_old[nodes - 1]

        Fe = LocalVector(2)
        Ke = LocalMatrix(2, 2) if need_matrix else None
        for q, (xi, w) in enumerate(zip(self.qp, self.qw)):
            N = np.array([0.5 * (1.0 - xi), 0.5 * (1.0 + xi)])
            c, c_old = N @ ue, N @ ue_old
            dc = B @ ue
            info = self._info(e, q, N @ xe, h)
            soln = LocalElementSolution.from_values([c], [c_old], [[dc, 0.0, 0.0]])
            mate = self.materials.compute(e, q, info, soln)

            jxw = w * detJ
            r = self.mobility * (mate["dFdc"] * N + self.kappa * dc * B)
            if self.dt is not None:
                r = r + (c - c_old) / self.dt * N
            Fe += LocalVector.from_numpy(jxw * r)
            if need_matrix:
                k = self.mobility * (mate["d2Fdc2"] * np.outer(N, N) + self.kappa * np.outer(B, B))
                if self.dt is not None:
                    k = k + np.outer(N, N) / self.dt
                Ke += LocalMatrix.from_numpy(jxw * k)
        return Fe, Ke

    def _assemble(self, x: np.ndarray, need_matrix: bool) -> None:
        if x.size != self.ndofs:
            raise ConfigurationError(f"solution has {x.size} values, expected {self.ndofs}")
        sys_ = self.system
        sys_.reset(need_matrix)
        sys_.u = x
        for e, nodes in enumerate(self.conn):
            Fe, Ke = self._element(e, nodes, x, need_matrix)
            sys_.scatter(nodes, Ke.to_numpy() if need_matrix else None, Fe.to_numpy())

        calc = FECalcType.JACOBIAN if need_matrix else FECalcType.RESIDUAL
        info = self._info(0, 0, 0.0)
        for bc in self.bcs:
            for d in bc.dofs:
                node = (self.coords[d - 1], 0.0, 0.0)
                bc.compute_bc_value(calc, bc.value, bc.params, info, (d,), node,
                                    sys_.K, sys_.rhs, x)
