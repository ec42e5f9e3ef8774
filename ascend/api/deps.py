"""
ascend.api.deps — FastAPI dependency injection
===============================================

Process-wide handles (engine, config, cache, dispatcher) are built once
and cached.  Tests swap them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from fastapi import HTTPException, status
from sqlalchemy import Engine

from ascend.config import AscendConfig, load_config
from ascend.database.engine import create_db_engine
from ascend.engine.cache import ResultCache, build_cache
from ascend.errors import AscendError, DeadlineExceeded, NotFoundError, ValidationError
from ascend.services.notifications import NotificationDispatcher, build_dispatcher

REQUEST_DEADLINE_SECONDS = 10.0


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AscendConfig:
    path = Path(os.getenv("ASCEND_CONFIG", "config.yaml"))
    if not path.exists():
        return AscendConfig.default()
    return load_config(path)


@lru_cache(maxsize=1)
def get_cache() -> ResultCache:
    return build_cache(get_config(), os.getenv("REDIS_URL"))


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    return build_dispatcher(get_config())


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
_STATUS_BY_KIND = {
    "MemberNotFound": status.HTTP_404_NOT_FOUND,
    "PersistenceError": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DeadlineExceeded": status.HTTP_504_GATEWAY_TIMEOUT,
}


def http_error(exc: AscendError) -> HTTPException:
    """Map a domain error onto an :class:`HTTPException`."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, DeadlineExceeded):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(code, detail=exc.message)


def grant_error_status(error_kind: str | None) -> int:
    return _STATUS_BY_KIND.get(error_kind or "", status.HTTP_400_BAD_REQUEST)
