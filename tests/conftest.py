"""
pytest configuration and fixtures for the SVCB codec tests.

Provides reusable fixtures for:
- Writers pre-loaded with a small schema
- Canonical encoded traces
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from logic_values import LogicKind
from svcb_writer import SvcbWriter

# Configure Hypothesis profiles
from hypothesis import settings, Verbosity, Phase

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # Disable deadline for slow interpreters
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

# Load profile from environment
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def writer():
    """Empty writer, header already emitted (timescale 1000 fs)."""
    return SvcbWriter(timescale=1000)


@pytest.fixture
def cpu_writer():
    """
    Writer with a small hierarchy already declared:

        top/            scope 1
          clk           storage 0 (two, 1)
          cpu/          scope 2
            state       storage 1 (two, 2), enum IDLE=00 RUN=01 HALT=10
            pc          storages 2 + 3 (two, 4 each), integer [7:0]
            bus         storage 4 (four, 4)
    """
    w = SvcbWriter(timescale=1000)
    w.scope(1, 'top')
    w.scope(2, 'cpu', parent=1)
    w.storage(0, LogicKind.TWO_VALUED, 1)
    w.storage(1, LogicKind.TWO_VALUED, 2)
    w.storage(2, LogicKind.TWO_VALUED, 4)
    w.storage(3, LogicKind.TWO_VALUED, 4)
    w.storage(4, LogicKind.FOUR_VALUED, 4)
    w.variable(1, 'clk', 0)
    w.enum_variable(2, 'state', 1, [('IDLE', [0, 0]), ('RUN', [0, 1]), ('HALT', [1, 0])])
    w.integer_variable(2, 'pc', [2, 3], msb=7, lsb=0)
    w.variable(2, 'bus', 4)
    return w


@pytest.fixture
def clock_trace():
    """One scope, one 1-bit storage, clk toggling 1 @0 then 0 @5."""
    w = SvcbWriter(timescale=1000)
    w.scope(1, 'top')
    w.storage(0, LogicKind.TWO_VALUED, 1)
    w.variable(1, 'clk', 0)
    w.timestep(0)
    w.value_change({0: [1]})
    w.timestep(5)
    w.value_change({0: [0]})
    return w.getvalue()


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "compliance: marks tests that pin down the byte format"
    )
