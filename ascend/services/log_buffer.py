"""
ascend.services.log_buffer — Recent-log ring buffer & operation timing
=======================================================================

A thread-safe ring buffer attached to the root logger so the API can
serve the latest records at ``GET /api/logs`` without shipping them
anywhere.  Per-level counters survive buffer rotation, which makes
"how many badge evaluations failed since startup" answerable even after
the records themselves have scrolled out.

:func:`timed` wraps a block and logs its duration at DEBUG (or WARNING
once it crosses a threshold).

Each process keeps its own buffer.  Nothing is persisted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
SLOW_OPERATION_SECONDS = 1.0

_buffer: LogBuffer | None = None
_lock = threading.Lock()


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: str
    level: str
    logger: str
    message: str


class LogBuffer:
    """Bounded deque of :class:`LogEntry` plus lifetime per-level counts."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            self._counts[entry.level] += 1

    def tail(self, n: int = 200, min_level: str | None = None) -> list[dict[str, str]]:
        """The latest *n* entries at or above *min_level*, oldest first."""
        threshold = logging.getLevelName(min_level.upper()) if min_level else 0
        if not isinstance(threshold, int):
            raise ValueError(f"Unknown log level: {min_level}")

        with self._lock:
            snapshot = list(self._entries)

        kept = [
            asdict(e) for e in snapshot
            if logging.getLevelName(e.level) >= threshold
        ]
        return kept[-n:] if n else kept

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RingBufferHandler(logging.Handler):
    """Logging handler that appends records to a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
            ))
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-global access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def install_handler(level: int = logging.INFO) -> RingBufferHandler:
    """Attach the ring-buffer handler to the root logger once.

    Uvicorn's loggers are switched to propagate so request logs land in
    the buffer too.
    """
    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing, RingBufferHandler):
            return existing

    handler = RingBufferHandler(get_buffer(), level=level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).propagate = True
    return handler


def get_logs(tail: int = 200, level: str | None = None) -> list[dict[str, str]]:
    return get_buffer().tail(tail, level)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------
@contextmanager
def timed(name: str, *, slow_after: float = SLOW_OPERATION_SECONDS) -> Iterator[None]:
    """Log how long the wrapped block took.

    Usage::

        with timed("leaderboard.generate"):
            rows = compute()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if elapsed >= slow_after:
            logger.warning("%s took %.3fs", name, elapsed)
        else:
            logger.debug("%s took %.3fs", name, elapsed)
