from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from installgate.db import build_engine, build_sessionmaker, init_db
from installgate.install_store import RESOLVE_TYPE_KEY, InstallStore, strip_resolve_type


def build_store(listener=None) -> InstallStore:
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    return InstallStore(build_sessionmaker(engine), on_change=listener)


@pytest.mark.asyncio
async def test_set_then_get_returns_record() -> None:
    store = build_store()
    record = {"slack": {"token": "t", RESOLVE_TYPE_KEY: "site/apps/slack"}}

    await store.set("i1", record)

    assert await store.get("i1") == record


@pytest.mark.asyncio
async def test_get_missing_returns_none() -> None:
    store = build_store()
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_set_overwrites_instead_of_merging() -> None:
    store = build_store()
    await store.set("i1", {"slack": {"token": "a", "team": "x", RESOLVE_TYPE_KEY: "site/apps/slack"}})
    await store.set("i1", {"slack": {"token": "b", RESOLVE_TYPE_KEY: "site/apps/slack"}})

    assert await store.get("i1") == {"slack": {"token": "b", RESOLVE_TYPE_KEY: "site/apps/slack"}}
    assert await store.keys() == ["i1"]


@pytest.mark.asyncio
async def test_returned_record_is_a_copy() -> None:
    store = build_store()
    await store.set("i1", {"slack": {"token": "t", RESOLVE_TYPE_KEY: "site/apps/slack"}})

    record = await store.get("i1")
    record["slack"]["token"] = "mutated"

    assert (await store.get("i1"))["slack"]["token"] == "t"


@pytest.mark.asyncio
async def test_remove_deletes_record() -> None:
    store = build_store()
    await store.set("i1", {"slack": {RESOLVE_TYPE_KEY: "site/apps/slack"}})

    await store.remove("i1")

    assert await store.get("i1") is None
    assert await store.keys() == []


@pytest.mark.asyncio
async def test_every_write_notifies_listeners() -> None:
    changed: list[str] = []
    store = build_store(changed.append)
    late: list[str] = []
    store.subscribe(late.append)

    await store.set("i1", {"slack": {RESOLVE_TYPE_KEY: "site/apps/slack"}})
    await store.remove("i1")
    await store.remove("never-existed")

    assert changed == ["i1", "i1", "never-existed"]
    assert late == changed


@pytest.mark.asyncio
async def test_store_failure_propagates() -> None:
    engine = build_engine("sqlite:///:memory:")
    # Tables never created
    store = InstallStore(build_sessionmaker(engine))

    with pytest.raises(OperationalError):
        await store.get("i1")


def test_strip_resolve_type_only_removes_marker() -> None:
    props = {"token": "t", "nested": {RESOLVE_TYPE_KEY: "kept"}, RESOLVE_TYPE_KEY: "site/apps/slack"}

    assert strip_resolve_type(props) == {"token": "t", "nested": {RESOLVE_TYPE_KEY: "kept"}}
    assert strip_resolve_type(None) == {}


@pytest.mark.asyncio
async def test_generation_counts_writes_per_install() -> None:
    store = build_store()
    assert store.generation("i1") == 0

    await store.set("i1", {"slack": {RESOLVE_TYPE_KEY: "site/apps/slack"}})
    await store.set("i1", {"slack": {"token": "t", RESOLVE_TYPE_KEY: "site/apps/slack"}})
    await store.remove("i1")

    assert store.generation("i1") == 3
    assert store.generation("i2") == 0
