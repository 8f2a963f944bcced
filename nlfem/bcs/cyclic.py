"""nlfem.bcs.cyclic
Dirichlet condition driven by a (time, value) table.

``params`` holds the table as a flat sequence ``t1, v1, t2, v2, ...`` with
strictly increasing times.  Between samples the value is interpolated
linearly; before the first or after the last sample it is clamped to that
sample's value.  A one-sample table is constant.  The result is scaled by
``bc_value``.
"""
from __future__ import annotations

import numpy as np

from nlfem.bcs import register_bc
from nlfem.bcs.base import DirichletBC
from nlfem.core.errors import ConfigurationError
from nlfem.core.localmatrix import LocalVector


def _parse_table(params):
    vals = np.asarray(params, dtype=float).ravel()
    if vals.size == 0 or vals.size % 2:
        raise ConfigurationError(
            f"cyclic Dirichlet BC needs (time, value) pairs, got {vals.size} numbers"
        )
    tspan, yspan = vals[0::2].copy(), vals[1::2].copy()
    if np.any(np.diff(tspan) <= 0.0):
        raise ConfigurationError(
            f"cyclic Dirichlet BC times must be strictly increasing, got {tspan.tolist()}"
        )
    return tspan, yspan


def interpolate_table(tspan: np.ndarray, yspan: np.ndarray, t: float) -> float:
    if tspan.size == 1 or t <= tspan[0]:
        return float(yspan[0])
    if t >= tspan[-1]:
        return float(yspan[-1])
    i = int(np.searchsorted(tspan, t, side="right"))   # tspan[i-1] <= t < tspan[i]
    t0, t1 = tspan[i - 1], tspan[i]
    y0, y1 = yspan[i - 1], yspan[i]
    return float(y0 + (y1 - y0) * (t - t0) / (t1 - t0))


@register_bc("cyclicdirichlet")
class CyclicDirichletBC(DirichletBC):

    def __init__(self, dofs, value=1.0, params=(), **kwargs):
        super().__init__(dofs, value, params, **kwargs)
        self.tspan, self.yspan = _parse_table(self.params)

    @classmethod
    def from_table(cls, dofs, table, value=1.0, **kwargs):
        """Build from ``[(t1, v1), (t2, v2), ...]``."""
        flat = [x for pair in table for x in pair]
        return cls(dofs, value, flat, **kwargs)

    def value_at(self, t: float) -> float:
        return self.value * interpolate_table(self.tspan, self.yspan, t)

    def compute_u(self, dofs, bc_value, params, elmt_info, node_coords):
        if tuple(float(p) for p in params) == self.params:
            tspan, yspan = self.tspan, self.yspan
        else:
            tspan, yspan = _parse_table(params)
        return LocalVector(len(dofs), bc_value * interpolate_table(tspan, yspan, elmt_info.t))
