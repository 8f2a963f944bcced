from pathlib import Path

import pytest

from nlfem.core import ConfigurationError
from nlfem.io import OutputSystem, OutputType


@pytest.mark.parametrize("interval", [1, 3, 5])
def test_persists_every_interval(interval):
    out = OutputSystem(interval=interval)
    decisions = [out.on_step_accepted(step) for step in range(1, 16)]
    assert out.written_steps == list(range(interval, 16, interval))
    assert sum(decisions) == 15 // interval


@pytest.mark.parametrize("interval", [0, -2, 1.5])
def test_invalid_interval(interval):
    with pytest.raises(ConfigurationError):
        OutputSystem(interval=interval)


def test_from_dict():
    out = OutputSystem.from_dict({"type": "CSV", "interval": 2, "folder": "results"})
    assert out.output_type is OutputType.CSV
    assert out.should_output(4) and not out.should_output(3)
    assert out.filename(4) == Path("results") / "solution_0004.csv"
    with pytest.raises(ConfigurationError):
        OutputSystem.from_dict({"every": 2})
    with pytest.raises(ConfigurationError):
        OutputSystem.from_dict({"type": "hdf5"})


def test_default_is_vtu_every_step():
    out = OutputSystem()
    assert out.interval == 1 and out.output_type is OutputType.VTU
    assert out.filename(1) == Path("solution_0001.vtu")
