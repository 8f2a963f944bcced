"""nlfem.materials.quadratic
Single-well (harmonic) free energy, F = k/2 (c - c0)^2.
"""
from nlfem.materials import register_material
from nlfem.materials.base import FreeEnergyMaterial


@register_material("quadratic")
class QuadraticFreeEnergyMaterial(FreeEnergyMaterial):
    param_names = ("c0", "k")

    def compute_F(self, params, c):
        c0, k = params
        return 0.5 * k * (c - c0) ** 2

    def compute_dFdc(self, params, c):
        c0, k = params
        return k * (c - c0)

    def compute_d2Fdc2(self, params, c):
        return params[1]
