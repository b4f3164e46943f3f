"""Ephemeral store for ad-hoc OAuth app credentials ("custom bots")."""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 10 * 60
SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class BotCredentials:
    client_id: str
    client_secret: str
    bot_name: str | None = None


@dataclass(frozen=True)
class _Session:
    credentials: BotCredentials
    expires_at: float


def generate_session_token() -> str:
    """32 random bytes, URL-safe base64 without padding."""
    return secrets.token_urlsafe(32)


class CustomBotSessionStore:
    def __init__(
        self,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, _Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def store(self, client_id: str, client_secret: str, bot_name: str | None = None) -> str:
        token = generate_session_token()
        self._sessions[token] = _Session(
            credentials=BotCredentials(client_id, client_secret, bot_name),
            expires_at=self._clock() + self.ttl_seconds,
        )
        return token

    def retrieve(self, token: str | None) -> BotCredentials | None:
        """Return the credentials for ``token``.

        Reads are not destructive: the start and callback legs of one OAuth
        flow both dereference the same token.
        """
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        if self._clock() >= session.expires_at:
            self._sessions.pop(token, None)
            return None
        return session.credentials

    def invalidate(self, token: str | None) -> None:
        if token:
            self._sessions.pop(token, None)

    def sweep(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        now = self._clock()
        expired = [token for token, session in self._sessions.items() if now >= session.expires_at]
        for token in expired:
            del self._sessions[token]
        if expired:
            logger.debug("Swept %d expired custom bot sessions", len(expired))
        return len(expired)


async def sweep_loop(
    store: CustomBotSessionStore,
    shutdown_event: asyncio.Event,
    interval_seconds: float = SWEEP_INTERVAL_SECONDS,
) -> None:
    """Periodically sweep ``store`` until ``shutdown_event`` is set."""
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

        if shutdown_event.is_set():
            break

        try:
            store.sweep()
        except Exception as e:
            logger.exception("Error in session sweep loop: %s", e)


__all__ = [
    "BotCredentials",
    "CustomBotSessionStore",
    "generate_session_token",
    "sweep_loop",
    "SESSION_TTL_SECONDS",
    "SWEEP_INTERVAL_SECONDS",
]
