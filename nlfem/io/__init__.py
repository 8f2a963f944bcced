from .output import OutputSystem, OutputType

__all__ = ["OutputSystem", "OutputType"]
