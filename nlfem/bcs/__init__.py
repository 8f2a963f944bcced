"""nlfem.bcs
Registry of Dirichlet boundary-condition enforcers.
"""
from __future__ import annotations

from importlib import import_module
from typing import Dict

from nlfem.core.errors import ConfigurationError

_REGISTRY: Dict[str, type] = {}


def register_bc(name: str):
    def deco(cls):
        _REGISTRY[name.lower()] = cls
        return cls
    return deco


def get_bc(name: str, *args, **kwargs):
    cls = _REGISTRY.get(name.lower())
    if cls is None:
        raise ConfigurationError(f"unknown boundary condition '{name}', available: {sorted(_REGISTRY)}")
    return cls(*args, **kwargs)


for _mod in ("dirichlet", "cyclic", "function"):
    import_module(f"nlfem.bcs.{_mod}")

from nlfem.bcs.base import DEFAULT_PENALTY, DirichletBC, FECalcType  # noqa: E402
from nlfem.bcs.cyclic import CyclicDirichletBC  # noqa: E402
from nlfem.bcs.dirichlet import ConstantDirichletBC  # noqa: E402
from nlfem.bcs.function import FunctionDirichletBC  # noqa: E402

__all__ = ['register_bc', 'get_bc', 'DEFAULT_PENALTY', 'DirichletBC', 'FECalcType',
           'ConstantDirichletBC', 'CyclicDirichletBC', 'FunctionDirichletBC']
