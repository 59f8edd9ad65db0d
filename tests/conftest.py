"""
Shared pytest fixtures for tdsbridge tests.

Every adapter fixture runs against the scripted fake driver in
``tests._support.fake_driver``; no SQL Server is needed.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from tdsbridge.adapters.mssql import TdsDatabase
from tdsbridge.adapters.types import IdentifierCase, Timezone
from tests._support.fake_driver import FakeServer, make_config


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def db(fake_server: FakeServer) -> Iterator[TdsDatabase]:
    database = TdsDatabase(make_config(), client_factory=fake_server.factory)
    yield database
    database.disconnect()


@pytest.fixture
def lower_db(fake_server: FakeServer) -> Iterator[TdsDatabase]:
    database = TdsDatabase(make_config(IdentifierCase.LOWER), client_factory=fake_server.factory)
    yield database
    database.disconnect()


@pytest.fixture
def upper_db(fake_server: FakeServer) -> Iterator[TdsDatabase]:
    database = TdsDatabase(make_config(IdentifierCase.UPPER), client_factory=fake_server.factory)
    yield database
    database.disconnect()


@pytest.fixture
def utc_db(fake_server: FakeServer) -> Iterator[TdsDatabase]:
    database = TdsDatabase(
        make_config(database_timezone=Timezone.UTC),
        client_factory=fake_server.factory,
    )
    yield database
    database.disconnect()
