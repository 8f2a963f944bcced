"""nlfem.io.output
Output cadence controller.

Decides on which accepted steps a result file should be produced.  Writing
the file itself is left to the caller (mesh/field serialization lives
outside this package).
"""
from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from nlfem.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class OutputType(enum.Enum):
    VTU = "vtu"
    VTK = "vtk"
    CSV = "csv"


class OutputSystem:
    """Persist every ``interval``-th accepted step.

    Steps are counted from 1, so with ``interval=3`` the steps 3, 6, 9, ...
    are written.
    """

    def __init__(self, interval: int = 1, output_type: Union[OutputType, str] = OutputType.VTU,
                 folder: Optional[Union[str, Path]] = None):
        if isinstance(interval, bool) or int(interval) != interval or interval < 1:
            raise ConfigurationError(f"output interval must be an integer >= 1, got {interval!r}")
        try:
            self.output_type = OutputType(output_type.lower() if isinstance(output_type, str)
                                          else output_type)
        except ValueError:
            raise ConfigurationError(
                f"unknown output type '{output_type}', expected one of "
                f"{[t.value for t in OutputType]}"
            ) from None
        self.interval = int(interval)
        self.folder = Path(folder) if folder is not None else None
        self.written_steps: List[int] = []

    @classmethod
    def from_dict(cls, block: Mapping[str, Any]) -> "OutputSystem":
        """``{"type": "vtu", "interval": 5, "folder": "results"}``"""
        known = {"type": "output_type", "interval": "interval", "folder": "folder"}
        kwargs = {}
        for key, val in block.items():
            if key.lower() not in known:
                raise ConfigurationError(f"unknown output option '{key}'")
            kwargs[known[key.lower()]] = val
        return cls(**kwargs)

    def should_output(self, step: int) -> bool:
        return step % self.interval == 0

    def filename(self, step: int, prefix: str = "solution") -> Path:
        name = f"{prefix}_{step:04d}.{self.output_type.value}"
        return self.folder / name if self.folder is not None else Path(name)

    def on_step_accepted(self, step: int) -> bool:
        """Record an accepted step; True when it is due for output."""
        due = self.should_output(step)
        if due:
            self.written_steps.append(step)
            logger.info("Output step %d -> %s", step, self.filename(step))
        return due

    def __repr__(self) -> str:
        return (f"OutputSystem(interval={self.interval}, "
                f"output_type={self.output_type.value!r}, folder={self.folder})")
