"""Durable install store backed by SQLAlchemy.

Keys are install identifiers, values are JSON documents whose top-level keys
are app identifiers. Every mutation notifies ``on_change`` so derived caches
(the instance cache) never serve a context built from stale configuration.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from .models import InstallRecord

logger = logging.getLogger(__name__)

RESOLVE_TYPE_KEY = "__resolveType"

Record = dict[str, dict[str, Any]]


class InstallStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        on_change: Callable[[str], None] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._listeners: list[Callable[[str], None]] = []
        self._generations: dict[str, int] = {}
        if on_change is not None:
            self._listeners.append(on_change)

    def subscribe(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the install id after every write."""
        self._listeners.append(listener)

    def generation(self, install_id: str) -> int:
        """Number of writes to ``install_id`` seen by this store.

        Readers compare it before and after a read to detect a write that
        landed in between.
        """
        return self._generations.get(install_id, 0)

    def _notify(self, install_id: str) -> None:
        self._generations[install_id] = self.generation(install_id) + 1
        for listener in self._listeners:
            listener(install_id)

    # Blocking implementations, run off the event loop.

    def _get(self, install_id: str) -> Record | None:
        with self._session_factory() as db:
            row = db.execute(
                select(InstallRecord).where(InstallRecord.key == install_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            return copy.deepcopy(row.value)

    def _set(self, install_id: str, record: Record) -> None:
        with self._session_factory() as db:
            row = db.get(InstallRecord, install_id)
            if row is None:
                db.add(InstallRecord(key=install_id, value=copy.deepcopy(record)))
            else:
                row.value = copy.deepcopy(record)
            _commit(db)

    def _remove(self, install_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(InstallRecord, install_id)
            if row is None:
                return
            db.delete(row)
            _commit(db)

    def _keys(self) -> list[str]:
        with self._session_factory() as db:
            return list(db.execute(select(InstallRecord.key)).scalars().all())

    # Public async contract

    async def get(self, install_id: str) -> Record | None:
        return await run_in_threadpool(self._get, install_id)

    async def set(self, install_id: str, record: Record) -> None:
        await run_in_threadpool(self._set, install_id, record)
        logger.debug("Stored install %s (%s)", install_id, ", ".join(record) or "empty")
        self._notify(install_id)

    async def remove(self, install_id: str) -> None:
        await run_in_threadpool(self._remove, install_id)
        logger.debug("Removed install %s", install_id)
        self._notify(install_id)

    async def keys(self) -> list[str]:
        return await run_in_threadpool(self._keys)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def strip_resolve_type(props: dict[str, Any] | None) -> dict[str, Any]:
    """Return ``props`` without the internal resolve-type marker."""
    return {key: value for key, value in (props or {}).items() if key != RESOLVE_TYPE_KEY}


__all__ = ["InstallStore", "Record", "RESOLVE_TYPE_KEY", "strip_resolve_type"]
