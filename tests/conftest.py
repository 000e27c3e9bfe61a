"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from bayesiangrowthcurve.models import ParameterSet
from bayesiangrowthcurve.utils import Triangle


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (MCMC fitting)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow (MCMC fitting)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow"):
        # Run all tests
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def toy_records():
    """Two cohorts: A developed to lag 5, B observed to lag 2."""
    return [
        ("A", 1, 100.0, 10.0),
        ("A", 2, 100.0, 20.0),
        ("A", 3, 100.0, 27.0),
        ("A", 4, 100.0, 31.0),
        ("A", 5, 100.0, 33.0),
        ("B", 1, 100.0, 8.0),
        ("B", 2, 100.0, 15.0),
    ]


@pytest.fixture
def toy_triangle(toy_records):
    return Triangle.from_records(toy_records)


@pytest.fixture
def toy_params():
    """A single posterior draw for the toy triangle."""
    return ParameterSet(
        omega=1.5, theta=2.2, LR=np.array([0.4, 0.4]), mu_LR=np.log(0.4), sd_LR=0.1, sigma=0.05
    )


@pytest.fixture
def staircase_records():
    """A 4x4 staircase triangle with integer accident years."""
    rows = []
    losses = {
        2001: [40.0, 62.0, 70.0, 73.0],
        2002: [45.0, 66.0, 75.0],
        2003: [38.0, 60.0],
        2004: [50.0],
    }
    for year, values in losses.items():
        for lag, value in enumerate(values, start=1):
            rows.append((year, lag, 100.0, value))
    return rows


@pytest.fixture
def staircase_triangle(staircase_records):
    return Triangle.from_records(staircase_records)


@pytest.fixture
def parameter_draws():
    """Two chains of five varied draws for a four-cohort triangle."""
    rng = np.random.default_rng(0)
    chains = []
    for _ in range(2):
        chain = []
        for _ in range(5):
            chain.append(
                ParameterSet(
                    omega=float(rng.uniform(1.2, 1.8)),
                    theta=float(rng.uniform(1.0, 2.0)),
                    LR=rng.uniform(0.6, 0.9, size=4),
                    mu_LR=float(rng.normal(np.log(0.75), 0.05)),
                    sd_LR=float(rng.uniform(0.05, 0.2)),
                    sigma=float(rng.uniform(0.01, 0.05)),
                )
            )
        chains.append(chain)
    return chains
