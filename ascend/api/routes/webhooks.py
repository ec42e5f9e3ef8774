"""
ascend.api.routes.webhooks — Inbound activity events
=====================================================

Events are acknowledged immediately and processed in a background task,
so a slow rule set never holds the sender's connection open.  Signature
verification happens upstream of this service.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from sqlalchemy import Engine

from ascend.api.deps import get_cache, get_config, get_dispatcher, get_engine, http_error
from ascend.config import AscendConfig
from ascend.engine.cache import ResultCache
from ascend.engine.events import ActivityEvent
from ascend.errors import ValidationError
from ascend.services.event_service import handle_event
from ascend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def process_event(
    engine: Engine,
    event: ActivityEvent,
    cache: ResultCache,
    dispatcher: NotificationDispatcher,
    config: AscendConfig,
) -> None:
    try:
        results = handle_event(engine, event, cache=cache, dispatcher=dispatcher, config=config)
    except Exception:
        logger.exception("Webhook event %s failed", event.action)
        return
    failed = [r for r in results if not r.success]
    if failed:
        logger.warning(
            "%d of %d grants failed for %s", len(failed), len(results), event.action
        )


@router.post("/webhooks")
def receive_webhook(
    background: BackgroundTasks,
    payload: Any = Body(...),
    engine: Engine = Depends(get_engine),
    cache: ResultCache = Depends(get_cache),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config: AscendConfig = Depends(get_config),
):
    try:
        event = ActivityEvent.from_payload(payload)
    except ValidationError as exc:
        raise http_error(exc) from exc

    background.add_task(process_event, engine, event, cache, dispatcher, config)
    return {"received": True}
