"""
Saving guard.

Every local write opens a token for the (scope, key) it touches. While
a token is open, change notifications that match it are treated as the
echo of our own write and absorbed instead of triggering a reload.

A token closes when:
- the echo carrying the write's revision arrives after the write finished,
- an echo already arrived while the write was in flight, or
- the release delay has passed since the write finished.

Notifications for other keys of the same scope are not absorbed, so
independent remote changes still get through. A notification for a
guarded key with an unknown revision is still absorbed inside the
window; that is the price of loop suppression.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..scopes.base import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WriteToken:
    """One local write tracked by the guard. key=None guards the whole scope."""

    scope: str
    key: str | None
    opened_at: float
    completed_at: float | None = None
    revision: str | None = None
    echoed: bool = False

    @property
    def in_flight(self) -> bool:
        return self.completed_at is None


class SavingGuard:
    """In-flight write tokens keyed by scope."""

    def __init__(
        self,
        release_delay_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the guard.

        Args:
            release_delay_ms: How long a finished write keeps absorbing
                notifications when its echo has not been recognized
            clock: Monotonic clock in seconds
        """
        self.release_delay_s = release_delay_ms / 1000
        self._clock = clock
        self._tokens: dict[str, list[WriteToken]] = {}

    def begin(self, scope: str, key: str | None = None) -> WriteToken:
        """Open a token before issuing a write."""
        token = WriteToken(scope=scope, key=key, opened_at=self._clock())
        self._tokens.setdefault(scope, []).append(token)
        return token

    def complete(self, token: WriteToken, revision: str | None = None) -> None:
        """Mark a write finished (successfully or not) and start its release delay."""
        token.completed_at = self._clock()
        token.revision = revision
        if token.echoed:
            self._discard(token)

    def absorbs(self, event: ChangeEvent) -> bool:
        """Check whether an event is the echo of one of our writes.

        Returns:
            True if the event should be dropped
        """
        self._purge()
        for token in list(self._tokens.get(event.scope, ())):
            if not self._matches(token, event):
                continue
            if token.in_flight:
                token.echoed = True
            elif token.revision is not None and token.revision == event.revision:
                self._discard(token)
            logger.debug(f"Absorbed change echo for {event.scope}/{event.key}")
            return True
        return False

    def is_guarding(self, scope: str | None = None) -> bool:
        self._purge()
        if scope is None:
            return any(self._tokens.values())
        return bool(self._tokens.get(scope))

    def active_tokens(self, scope: str) -> list[WriteToken]:
        self._purge()
        return list(self._tokens.get(scope, ()))

    def clear(self) -> None:
        self._tokens.clear()

    @staticmethod
    def _matches(token: WriteToken, event: ChangeEvent) -> bool:
        if token.key is None or event.key is None:
            return True
        if token.key != event.key:
            return False
        if token.in_flight or token.revision is None or event.revision is None:
            return True
        return token.revision == event.revision

    def _purge(self) -> None:
        now = self._clock()
        for scope, tokens in list(self._tokens.items()):
            tokens[:] = [
                t for t in tokens
                if t.in_flight or now - t.completed_at < self.release_delay_s
            ]
            if not tokens:
                del self._tokens[scope]

    def _discard(self, token: WriteToken) -> None:
        tokens = self._tokens.get(token.scope)
        if tokens and token in tokens:
            tokens.remove(token)
            if not tokens:
                del self._tokens[token.scope]
