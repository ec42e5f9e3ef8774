"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite has no JSONB; a custom type compiler renders it as TEXT while
# SQLAlchemy's JSON processing still (de)serializes the values.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from ascend.config import AscendConfig
from ascend.database.models import Base, Company, Member, XPTransaction
from ascend.engine.cache import MemoryCache

_jsonb_sqlite_registered = False

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Ascend tables.

    StaticPool shares the one in-memory database across threads
    (``asyncio.to_thread`` in ``run_db`` and the TestClient's worker).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine, expire_on_commit=False) as session:
        yield session
        session.rollback()


@pytest.fixture
def company(db_engine: Engine) -> str:
    with Session(db_engine) as session:
        session.add(Company(id="acme", name="Acme Community", settings={}))
        session.commit()
    return "acme"


@pytest.fixture
def make_member(db_engine: Engine, company: str):
    """Factory: insert a member and return its id."""
    counter = iter(range(1, 10_000))

    def _make(total_xp: int = 0, level: int = 1, *, company_id: str = company,
              name: str | None = None) -> int:
        n = next(counter)
        with Session(db_engine) as session:
            member = Member(
                company_id=company_id,
                external_user_id=f"user_{company_id}_{n}",
                display_name=name or f"Member {n}",
                total_xp=total_xp,
                level=level,
            )
            session.add(member)
            session.commit()
            return member.id

    return _make


@pytest.fixture
def add_tx(db_engine: Engine):
    """Factory: append a raw ledger row with an explicit timestamp."""

    def _add(member_id: int, amount: int, event_type: str, created_at: datetime,
             reason: str = "seed") -> None:
        with Session(db_engine) as session:
            session.add(XPTransaction(
                member_id=member_id,
                amount=amount,
                reason=reason,
                event_type=event_type,
                created_at=created_at,
            ))
            session.commit()

    return _add


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock()


@pytest.fixture
def config() -> AscendConfig:
    return AscendConfig.default()


@pytest.fixture
def deps(cache, dispatcher, config) -> dict:
    """Collaborators shared by grant/event calls."""
    return {"cache": cache, "dispatcher": dispatcher, "config": config}


@pytest.fixture
def client(db_engine, cache, dispatcher, config):
    """FastAPI TestClient wired to the SQLite engine and test collaborators."""
    from fastapi.testclient import TestClient

    from ascend.api import deps as api_deps
    from ascend.api.main import app

    app.dependency_overrides[api_deps.get_engine] = lambda: db_engine
    app.dependency_overrides[api_deps.get_cache] = lambda: cache
    app.dependency_overrides[api_deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[api_deps.get_config] = lambda: config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
