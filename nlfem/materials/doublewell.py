"""nlfem.materials.doublewell
Double-well free energy for a binary mixture.

    F(c)    = factor (c - ca)^2 (c - cb)^2
    dF/dc   = 2 factor (c - ca)(c - cb)(2c - ca - cb)
    d2F/dc2 = 2 factor [(c - ca)^2 + (c - cb)^2 + 4 (c - ca)(c - cb)]

Minima (F = 0) sit at ``ca`` and ``cb``.  The law is evaluated at whatever
``c`` the iterate holds; out-of-range values are not clamped.
"""
from __future__ import annotations

import numba
import numpy as np

from nlfem.core.element import LocalElementInfo, LocalElementSolution
from nlfem.materials import register_material
from nlfem.materials.base import FreeEnergyMaterial, Materials


@numba.njit(cache=True)
def double_well(c, ca, cb, factor):
    """Return ``(F, dF/dc, d2F/dc2)``; works on floats and numpy arrays."""
    a = c - ca
    b = c - cb
    F = factor * a * a * b * b
    dF = 2.0 * factor * a * b * (a + b)
    d2F = 2.0 * factor * (a * a + b * b + 4.0 * a * b)
    return F, dF, d2F


@register_material("doublewell")
class DoubleWellFreeEnergyMaterial(FreeEnergyMaterial):
    param_names = ("ca", "cb", "factor")

    def compute_material_properties(self, params, elmt_info: LocalElementInfo,
                                    elmt_soln: LocalElementSolution,
                                    mate_old: Materials) -> Materials:
        ca, cb, factor = self.validate_params(params)
        F, dF, d2F = double_well(self.field_value(elmt_soln), ca, cb, factor)
        mate = Materials()
        mate["F"] = F
        mate["dFdc"] = dF
        mate["d2Fdc2"] = d2F
        return mate

    def compute_F(self, params, c):
        return float(double_well(float(c), *params)[0])

    def compute_dFdc(self, params, c):
        return float(double_well(float(c), *params)[1])

    def compute_d2Fdc2(self, params, c):
        return float(double_well(float(c), *params)[2])
