"""nlfem.materials
Registry of free-energy material laws.
"""
from __future__ import annotations

from importlib import import_module
from typing import Callable, Dict, Type

from nlfem.core.errors import ConfigurationError

_REGISTRY: Dict[str, type] = {}


def register_material(name: str) -> Callable[[Type], Type]:
    """Class decorator adding a material law under *name*."""
    def deco(cls):
        _REGISTRY[name.lower()] = cls
        return cls
    return deco


def get_material(name: str, *args, **kwargs):
    """Instantiate the material registered under *name*."""
    cls = _REGISTRY.get(name.lower())
    if cls is None:
        raise ConfigurationError(
            f"unknown material '{name}', available: {sorted(_REGISTRY)}"
        )
    return cls(*args, **kwargs)


def available_materials():
    return sorted(_REGISTRY)


# built-in laws register themselves on import
for _mod in ("doublewell", "quadratic", "symbolic"):
    import_module(f"nlfem.materials.{_mod}")

from nlfem.materials.base import FreeEnergyMaterial, Materials, make_parameter_set  # noqa: E402
from nlfem.materials.doublewell import DoubleWellFreeEnergyMaterial  # noqa: E402
from nlfem.materials.quadratic import QuadraticFreeEnergyMaterial  # noqa: E402
from nlfem.materials.symbolic import SymbolicFreeEnergyMaterial  # noqa: E402

__all__ = ['register_material', 'get_material', 'available_materials',
           'FreeEnergyMaterial', 'Materials', 'make_parameter_set',
           'DoubleWellFreeEnergyMaterial', 'QuadraticFreeEnergyMaterial',
           'SymbolicFreeEnergyMaterial']
