"""
ascend.api.main — FastAPI application entry point
==================================================

Run with::

    uvicorn ascend.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from ascend.api.deps import get_config, get_dispatcher, get_engine  # noqa: E402
from ascend.api.routes.logs import router as logs_router  # noqa: E402
from ascend.api.routes.members import router as members_router  # noqa: E402
from ascend.api.routes.rewards import router as rewards_router  # noqa: E402
from ascend.api.routes.webhooks import router as webhooks_router  # noqa: E402
from ascend.api.routes.xp import router as xp_router  # noqa: E402
from ascend.database.engine import init_db  # noqa: E402
from ascend.services.log_buffer import install_handler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Comma-separated ``CORS_ALLOW_ORIGINS``; empty means no cross-origin access."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — attach the log buffer, warm the engine."""
    # Uvicorn reconfigures logging on start, so the handler goes on here.
    install_handler()

    engine = get_engine()
    if os.getenv("ASCEND_CREATE_SCHEMA", "").lower() in {"1", "true", "yes"}:
        init_db(engine)
    logger.info("%s API started — engine ready (%s)", get_config().app_name, engine.url.database)
    yield
    logger.info("%s API shutting down", get_config().app_name)
    if get_dispatcher.cache_info().currsize:
        # Flush queued notifications before the process exits.
        close = getattr(get_dispatcher(), "close", None)
        if close is not None:
            close()


app = FastAPI(
    title="Ascend Gamification API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks_router, prefix="/api")
app.include_router(xp_router, prefix="/api")
app.include_router(members_router, prefix="/api")
app.include_router(rewards_router, prefix="/api")
app.include_router(logs_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
