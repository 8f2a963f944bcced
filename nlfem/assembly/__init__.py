from .system import GlobalSystem, line_mesh
from .phasefield import MaterialHandler, PhaseField1D

__all__ = ["GlobalSystem", "line_mesh", "MaterialHandler", "PhaseField1D"]
