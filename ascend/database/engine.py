"""
ascend.database.engine — Database Connection & Async Helper
============================================================

The grant engine, badge evaluator and leaderboard aggregator are plain
**synchronous** SQLAlchemy code.  The HTTP layer is ``asyncio``; calling
the database directly from a coroutine would stall the event loop until
the query returns.

:func:`run_db` bridges the two worlds:

    1. A request arrives            (async world).
    2. The route calls ``await run_db(grant_xp, engine, ...)``.
    3. ``run_db`` ships the call to the default thread pool via
       ``asyncio.to_thread()``.
    4. The DB work runs on a worker thread; the event loop stays free.
    5. The result is awaited back in the route.

An optional :class:`~ascend.engine.deadline.Deadline` bounds the wait with
``asyncio.wait_for``.  The worker thread itself cannot be interrupted; the
services check the same deadline before committing, so an abandoned call
never leaves a half-applied grant behind.

Usage::

    from ascend.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    result = await run_db(grant_xp, engine, member_id=7, amount=10, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from ascend.database.models import Base
from ascend.engine.deadline import Deadline
from ascend.errors import DeadlineExceeded

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    Pool sizing:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, *, seed: bool = True) -> None:
    """Create all tables defined in :mod:`ascend.database.models`.

    Safe to call on every startup.  With *seed* the demo company, its XP
    rules and starter badges are inserted if missing.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    if seed:
        from ascend.database.seed import seed_demo_company

        seed_demo_company(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Usage::

        with get_session(engine) as session:
            session.add(Company(id="acme", name="Acme"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(
    func: Callable[P, T],
    *args: P.args,
    deadline: Deadline | None = None,
    **kwargs: P.kwargs,
) -> T:
    """Run a **synchronous** database function on a background thread.

    ``deadline`` belongs to ``run_db`` and is *not* forwarded; services that
    take their own deadline get it through *kwargs* under a different call,
    e.g. ``run_db(partial(grant_xp, ..., deadline=d), deadline=d)``.

    Raises
    ------
    DeadlineExceeded
        If *deadline* passes before *func* returns.
    """
    call = asyncio.to_thread(func, *args, **kwargs)
    if deadline is None:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=deadline.remaining())
    except TimeoutError as exc:
        name = getattr(func, "__name__", repr(func))
        logger.warning("run_db(%s) abandoned after its deadline", name)
        raise DeadlineExceeded(f"Deadline exceeded waiting for {name}") from exc
