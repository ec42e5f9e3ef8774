"""
ascend.services.notifications — Member notification dispatch
=============================================================

The grant engine and reward service announce level-ups, badges and
rewards through a :class:`NotificationDispatcher`.  Delivery is always
best effort: the ``send_*`` helpers log and swallow every failure so a
flaky push provider can never undo or fail a committed grant.

Dispatchers:

* :class:`LogDispatcher`  — writes the notification to the log (default).
* :class:`HttpDispatcher` — POSTs JSON to a push endpoint with **httpx**.
* :class:`QueuedDispatcher` — wraps another dispatcher; callers enqueue and
  a background worker delivers.  Configured HTTP delivery always goes
  through one, so notifying never blocks a grant.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import httpx

if TYPE_CHECKING:
    from ascend.config import AscendConfig
    from ascend.database.models import Badge, Member

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify(
        self, user_id: str, title: str, message: str, link: str | None = None
    ) -> None: ...


class LogDispatcher:
    """Record notifications in the log instead of delivering them."""

    def notify(
        self, user_id: str, title: str, message: str, link: str | None = None
    ) -> None:
        logger.info("Notify %s: %s — %s (%s)", user_id, title, message, link or "-")


class HttpDispatcher:
    """Deliver notifications as JSON POSTs.

    Payload: ``{"user_id", "title", "body", "url"}``, authenticated with a
    bearer key.  Non-2xx responses raise :class:`httpx.HTTPStatusError`.
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def notify(
        self, user_id: str, title: str, message: str, link: str | None = None
    ) -> None:
        response = self._client.post(
            self.url,
            json={"user_id": user_id, "title": title, "body": message, "url": link},
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class QueuedDispatcher:
    """Queue notifications and deliver them from a background worker.

    ``notify`` only enqueues, so a slow or unreachable push provider never
    delays the grant that triggered the notification.  The worker thread
    starts lazily on the first notification.  Delivery failures are logged
    and dropped; a full queue drops the new notification.
    """

    def __init__(self, inner: NotificationDispatcher, max_queue: int = 1000) -> None:
        self.inner = inner
        self._queue: queue.Queue[tuple | None] = queue.Queue(maxsize=max_queue)
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    def notify(
        self, user_id: str, title: str, message: str, link: str | None = None
    ) -> None:
        self.start()
        try:
            self._queue.put_nowait((user_id, title, message, link))
        except queue.Full:
            logger.warning("Notification queue full; dropping %r for %s", title, user_id)

    def start(self) -> None:
        """Start the delivery worker if it is not running."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._drain_loop, name="notify-drain", daemon=True
            )
            self._worker.start()

    def _drain_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                try:
                    self.inner.notify(*item)
                except Exception:
                    logger.warning("Queued notification to %s failed", item[0], exc_info=True)
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued notification has been attempted."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, stop the worker and close the inner dispatcher."""
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None and worker.is_alive():
            self._queue.put(None)
            worker.join(timeout)
        close = getattr(self.inner, "close", None)
        if close is not None:
            close()


def build_dispatcher(config: AscendConfig) -> NotificationDispatcher:
    if config.notification_url:
        return QueuedDispatcher(HttpDispatcher(
            config.notification_url,
            api_key=os.getenv("NOTIFY_API_KEY"),
            timeout=config.notification_timeout,
        ))
    return LogDispatcher()


# ---------------------------------------------------------------------------
# Best-effort helpers
# ---------------------------------------------------------------------------
def send_level_up_notification(
    dispatcher: NotificationDispatcher, member: Member, level: int
) -> None:
    try:
        dispatcher.notify(
            member.external_user_id,
            f"🎉 Level Up! You're now Level {level}!",
            f"Congratulations! You've reached Level {level}. Keep up the great work!",
            f"/members/{member.id}",
        )
    except Exception:
        logger.warning("Level-up notification failed for member %s", member.id, exc_info=True)


def send_badge_notification(
    dispatcher: NotificationDispatcher, member: Member, badges: Sequence[Badge]
) -> None:
    if not badges:
        return
    if len(badges) == 1:
        title = f"🏆 Badge Earned: {badges[0].name}!"
        message = badges[0].description
    else:
        title = f"🏆 {len(badges)} Badges Earned!"
        message = "You've earned: " + ", ".join(b.name for b in badges)
    try:
        dispatcher.notify(member.external_user_id, title, message, "/badges")
    except Exception:
        logger.warning("Badge notification failed for member %s", member.id, exc_info=True)


def send_reward_notification(
    dispatcher: NotificationDispatcher, member: Member, reward_name: str
) -> None:
    try:
        dispatcher.notify(
            member.external_user_id,
            "🎁 Reward Claimed!",
            f"You've claimed: {reward_name}. Enjoy!",
            "/rewards",
        )
    except Exception:
        logger.warning("Reward notification failed for member %s", member.id, exc_info=True)
