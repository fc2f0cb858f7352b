"""Tests for the saving guard."""

from __future__ import annotations

import pytest

from scope_sync.scopes import ChangeEvent, ChangeOrigin
from scope_sync.sync import SavingGuard


def event(key: str | None, revision: str | None = None, scope: str = "todonna") -> ChangeEvent:
    return ChangeEvent(scope=scope, key=key, origin=ChangeOrigin.LOCAL, revision=revision)


@pytest.fixture
def guard(clock) -> SavingGuard:
    return SavingGuard(release_delay_ms=100, clock=clock)


class TestInFlightWrites:
    """Tests for notifications arriving while a write is in flight."""

    def test_absorbs_echo_of_same_key(self, guard: SavingGuard) -> None:
        guard.begin("todonna", "a")
        assert guard.absorbs(event("a", "7"))

    def test_other_keys_pass_through(self, guard: SavingGuard) -> None:
        guard.begin("todonna", "a")
        assert not guard.absorbs(event("b", "7"))

    def test_other_scopes_pass_through(self, guard: SavingGuard) -> None:
        guard.begin("todonna", "a")
        assert not guard.absorbs(event("a", "7", scope="einkauf"))

    def test_scope_wide_token_absorbs_every_key(self, guard: SavingGuard) -> None:
        guard.begin("todonna")
        assert guard.absorbs(event("a"))
        assert guard.absorbs(event("b"))

    def test_echo_during_flight_closes_token_on_completion(self, guard: SavingGuard) -> None:
        token = guard.begin("todonna", "a")
        assert guard.absorbs(event("a", "7"))

        guard.complete(token, "7")

        assert not guard.is_guarding("todonna")


class TestCompletedWrites:
    """Tests for notifications arriving after the write finished."""

    def test_matching_revision_closes_token(self, guard: SavingGuard) -> None:
        token = guard.begin("todonna", "a")
        guard.complete(token, "5")

        assert guard.absorbs(event("a", "5"))
        assert not guard.absorbs(event("a", "5"))

    def test_newer_revision_is_not_absorbed(self, guard: SavingGuard) -> None:
        token = guard.begin("todonna", "a")
        guard.complete(token, "5")

        assert not guard.absorbs(event("a", "6"))

    def test_unknown_revision_absorbed_until_release_delay(self, guard: SavingGuard, clock) -> None:
        token = guard.begin("todonna", "a")
        guard.complete(token, None)

        assert guard.absorbs(event("a", "9"))
        clock.advance(50)
        assert guard.absorbs(event("a", "10"))

        clock.advance(100)
        assert not guard.absorbs(event("a", "11"))
        assert not guard.is_guarding()

    def test_in_flight_tokens_never_expire(self, guard: SavingGuard, clock) -> None:
        guard.begin("todonna", "a")
        clock.advance(60_000)

        assert guard.absorbs(event("a"))
        assert [t.key for t in guard.active_tokens("todonna")] == ["a"]

    def test_clear_drops_all_tokens(self, guard: SavingGuard) -> None:
        guard.begin("todonna", "a")
        guard.begin("einkauf")

        guard.clear()

        assert not guard.is_guarding()
        assert not guard.absorbs(event("a"))
