"""
Shared test configuration and fixtures.

Scope clients are in-memory by default; time-dependent components get a
manually advanced clock so tests never sleep.
"""

from __future__ import annotations

from datetime import UTC

import pytest

from scope_sync.scopes import InMemoryScopeClient
from scope_sync.sync import SyncEngine


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def todos_client() -> InMemoryScopeClient:
    return InMemoryScopeClient("todonna")


@pytest.fixture
def engine(todos_client: InMemoryScopeClient) -> SyncEngine:
    return SyncEngine(todos_client, tz=UTC)

