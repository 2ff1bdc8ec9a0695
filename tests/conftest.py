"""Shared test fixtures."""

import pytest

from migrationguard.engine import Engine


@pytest.fixture
def pg12() -> Engine:
    return Engine.postgres(12)


@pytest.fixture
def pg10() -> Engine:
    return Engine.postgres(10)


@pytest.fixture
def mysql8() -> Engine:
    return Engine.mysql("8.0.12")
