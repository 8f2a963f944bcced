# conftest.py
import logging

import numpy as np
import pytest


@pytest.fixture(autouse=True)
def quiet_solver_logs(caplog):
    """Keep per-iteration solver output out of the test report."""
    caplog.set_level(logging.WARNING, logger="nlfem")


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
