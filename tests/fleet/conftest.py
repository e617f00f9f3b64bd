"""Shared fixtures for fleet tests."""

import pytest

from fleet_fakes import InMemoryBeads


@pytest.fixture
def beads():
    return InMemoryBeads()
