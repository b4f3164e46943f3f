from __future__ import annotations

import pathlib

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, future=True, pool_pre_ping=True)

    database = url.database or ""
    if database in ("", ":memory:"):
        # One shared connection so every session sees the same in-memory db
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    pathlib.Path(database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False},
    )


def build_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_db(engine: Engine) -> None:
    from . import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)
