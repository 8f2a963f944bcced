"""nlfem.materials.symbolic
Free energy given as a sympy expression of ``c`` and named parameters.

The first and second derivatives are obtained with ``sympy.diff`` and
lambdified once, so F, dF/dc and d2F/dc2 are consistent by construction.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Sequence

import sympy as sp

from nlfem.core.errors import ConfigurationError
from nlfem.materials import register_material
from nlfem.materials.base import FreeEnergyMaterial


@lru_cache(maxsize=None)
def _lambdify_potential(expr_src: str, param_names: tuple):
    c = sp.Symbol("c")
    syms = tuple(sp.Symbol(name) for name in param_names)
    local = {"c": c, **{name: s for name, s in zip(param_names, syms)}}
    try:
        F = sp.sympify(expr_src, locals=local)
    except sp.SympifyError as exc:
        raise ConfigurationError(f"can't parse free energy {expr_src!r}: {exc}") from exc

    unknown = F.free_symbols - {c, *syms}
    if unknown:
        raise ConfigurationError(
            f"free energy {expr_src!r} uses undeclared symbols {sorted(map(str, unknown))}"
        )
    args = (c, *syms)
    dF = sp.diff(F, c)
    d2F = sp.diff(F, c, 2)
    return tuple(sp.lambdify(args, e, "numpy") for e in (F, dF, d2F))


@register_material("symbolic")
class SymbolicFreeEnergyMaterial(FreeEnergyMaterial):
    """Example::

        SymbolicFreeEnergyMaterial("w*c**2*(1-c)**2", param_names=("w",))
    """

    def __init__(self, expression: str, param_names: Sequence[str] = ()):
        self.expression = str(expression)
        self.param_names = tuple(param_names)
        self._F, self._dF, self._d2F = _lambdify_potential(self.expression, self.param_names)

    def compute_F(self, params, c):
        return float(self._F(c, *params))

    def compute_dFdc(self, params, c):
        return float(self._dF(c, *params))

    def compute_d2Fdc2(self, params, c):
        return float(self._d2F(c, *params))
