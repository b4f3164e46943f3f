from __future__ import annotations

import asyncio

import pytest

from installgate.sessions import CustomBotSessionStore, generate_session_token, sweep_loop


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_tokens_are_random_and_url_safe() -> None:
    tokens = {generate_session_token() for _ in range(50)}

    assert len(tokens) == 50
    for token in tokens:
        assert len(token) >= 43
        assert all(ch.isalnum() or ch in "-_" for ch in token)


def test_retrieve_is_not_destructive() -> None:
    store = CustomBotSessionStore(clock=FakeClock())
    token = store.store("client", "secret", "my-bot")

    first = store.retrieve(token)
    second = store.retrieve(token)

    assert first == second
    assert first.client_id == "client"
    assert first.client_secret == "secret"
    assert first.bot_name == "my-bot"


def test_invalidate_drops_session() -> None:
    store = CustomBotSessionStore(clock=FakeClock())
    token = store.store("client", "secret")

    store.invalidate(token)

    assert store.retrieve(token) is None
    store.invalidate(token)
    store.invalidate(None)


def test_session_expires_after_ten_minutes() -> None:
    clock = FakeClock()
    store = CustomBotSessionStore(clock=clock)
    token = store.store("client", "secret")

    clock.advance(599)
    assert store.retrieve(token) is not None

    clock.advance(1)
    assert store.retrieve(token) is None
    # Lazily deleted on the expired read
    assert len(store) == 0


def test_sweep_drops_session_at_exactly_its_ttl() -> None:
    clock = FakeClock()
    store = CustomBotSessionStore(clock=clock)
    store.store("client", "secret")

    clock.advance(600)

    assert store.sweep() == 1
    assert len(store) == 0


def test_unknown_token_returns_none() -> None:
    store = CustomBotSessionStore()
    assert store.retrieve("nope") is None
    assert store.retrieve(None) is None


def test_sweep_removes_only_expired_sessions() -> None:
    clock = FakeClock()
    store = CustomBotSessionStore(ttl_seconds=60, clock=clock)
    old = store.store("old", "secret")
    clock.advance(45)
    fresh = store.store("fresh", "secret")
    clock.advance(30)

    assert store.sweep() == 1
    assert len(store) == 1
    assert store.retrieve(old) is None
    assert store.retrieve(fresh).client_id == "fresh"


@pytest.mark.asyncio
async def test_sweep_loop_sweeps_until_shutdown() -> None:
    clock = FakeClock()
    store = CustomBotSessionStore(ttl_seconds=1, clock=clock)
    store.store("client", "secret")
    clock.advance(5)
    shutdown = asyncio.Event()

    task = asyncio.create_task(sweep_loop(store, shutdown, interval_seconds=0.01))
    for _ in range(100):
        if len(store) == 0:
            break
        await asyncio.sleep(0.01)

    shutdown.set()
    await asyncio.wait_for(task, timeout=1)

    assert len(store) == 0
    assert task.done()
