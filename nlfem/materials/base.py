"""nlfem.materials.base
Free-energy material laws evaluated at a single integration point.

A law produces three scalar properties from the local field value ``c``:

    F       free energy density
    dFdc    first derivative (chemical potential / driving force)
    d2Fdc2  second derivative (tangent stiffness contribution)

Two :class:`Materials` instances live per integration point: the committed
"old" response and the "current" one being computed in the Newton loop.
"""
from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Tuple

import numpy as np

from nlfem.core.element import LocalElementInfo, LocalElementSolution
from nlfem.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MaterialParameterSet = Tuple[float, ...]


def make_parameter_set(values: Iterable[float]) -> MaterialParameterSet:
    """Freeze a parameter sequence read from configuration."""
    return tuple(float(v) for v in values)


class Materials:
    """Named material response: scalar, vector and rank-2 properties."""

    def __init__(self):
        self.scalars: Dict[str, float] = {}
        self.vectors: Dict[str, np.ndarray] = {}
        self.rank2: Dict[str, np.ndarray] = {}

    def __getitem__(self, name: str) -> float:
        return self.scalars[name]

    def __setitem__(self, name: str, value: float) -> None:
        self.scalars[name] = float(value)

    def __contains__(self, name: str) -> bool:
        return name in self.scalars or name in self.vectors or name in self.rank2

    def copy(self) -> "Materials":
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"Materials(scalars={self.scalars})"


class FreeEnergyMaterial(ABC):
    """Common driver for free-energy laws of a single scalar field.

    Subclasses declare ``param_names`` and implement the three potential
    functions; this base class validates parameters and packs the response.
    """

    #: names of the expected parameters, in configuration order
    param_names: Tuple[str, ...] = ()
    #: local dof (1-based) holding the concentration-like field
    field_dof: int = 1

    # ------------------------------------------------------------------
    def validate_params(self, params) -> MaterialParameterSet:
        params = make_parameter_set(params)
        if len(params) != len(self.param_names):
            raise ConfigurationError(
                f"{type(self).__name__} expects {len(self.param_names)} parameters "
                f"{self.param_names}, got {len(params)}"
            )
        return params

    def field_value(self, elmt_soln: LocalElementSolution) -> float:
        return elmt_soln.u[self.field_dof]

    # ------------------------------------------------------------------
    def init_material_properties(self, params, elmt_info: LocalElementInfo,
                                 elmt_soln: LocalElementSolution) -> Materials:
        """Seed the committed state for the first step (zero history)."""
        self.validate_params(params)
        mate = Materials()
        mate["F"] = 0.0
        mate["dFdc"] = 0.0
        mate["d2Fdc2"] = 0.0
        return mate

    def compute_material_properties(self, params, elmt_info: LocalElementInfo,
                                    elmt_soln: LocalElementSolution,
                                    mate_old: Materials) -> Materials:
        params = self.validate_params(params)
        c = self.field_value(elmt_soln)
        mate = Materials()
        mate["F"] = self.compute_F(params, c)
        mate["dFdc"] = self.compute_dFdc(params, c)
        mate["d2Fdc2"] = self.compute_d2Fdc2(params, c)
        return mate

    # ------------------------------------------------------------------
    @abstractmethod
    def compute_F(self, params: MaterialParameterSet, c: float) -> float: ...

    @abstractmethod
    def compute_dFdc(self, params: MaterialParameterSet, c: float) -> float: ...

    @abstractmethod
    def compute_d2Fdc2(self, params: MaterialParameterSet, c: float) -> float: ...
