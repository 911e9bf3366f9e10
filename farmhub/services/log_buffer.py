"""
farmhub.services.log_buffer — Recent Log Capture for the Admin API
===================================================================

A bounded, thread-safe buffer of recent log records fed by a
``logging.Handler`` on the root logger.  Admins tail it through
``GET /api/admin/logs`` and change the capture level through
``PUT /api/admin/logs/level``.

Every captured record gets a monotonically increasing ``seq`` so a
polling client can ask only for records newer than the last one it saw.
Nothing is persisted; the buffer starts empty on every process start.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_buffer: LogBuffer | None = None
_lock = threading.Lock()


@dataclass(frozen=True, slots=True)
class LogEntry:
    seq: int
    timestamp: str
    level: str
    logger: str
    message: str
    exc_text: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class LogBuffer:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def add(self, record: logging.LogRecord, message: str, exc_text: str | None = None) -> LogEntry:
        with self._lock:
            entry = LogEntry(
                seq=next(self._seq),
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=message,
                exc_text=exc_text,
            )
            self._entries.append(entry)
        return entry

    def entries(
        self,
        *,
        tail: int = 200,
        min_level: str | None = None,
        logger_prefix: str | None = None,
        after_seq: int | None = None,
    ) -> list[LogEntry]:
        """Newest *tail* entries matching every given filter, oldest first."""
        threshold = logging.getLevelName(min_level.upper()) if min_level else 0
        if not isinstance(threshold, int):
            raise ValueError(f"Invalid level: {min_level}")

        with self._lock:
            snapshot = list(self._entries)

        matched = [
            e for e in snapshot
            if logging.getLevelName(e.level) >= threshold
            and (not logger_prefix or e.logger == logger_prefix or e.logger.startswith(logger_prefix + "."))
            and (after_seq is None or e.seq > after_seq)
        ]
        return matched[-tail:] if tail > 0 else matched

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BufferHandler(logging.Handler):
    """Sends formatted records into a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            exc_text = None
            if record.exc_info:
                exc_text = logging.Formatter().formatException(record.exc_info)
            self.buffer.add(record, record.getMessage(), exc_text)
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-wide access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def _installed_handler() -> BufferHandler | None:
    for handler in logging.getLogger().handlers:
        if isinstance(handler, BufferHandler):
            return handler
    return None


def install_handler(level: int = logging.INFO) -> BufferHandler:
    """Attach the buffer handler to the root logger once per process.

    Uvicorn's loggers are switched to propagate so access and error
    records reach the root handler too.
    """
    handler = _installed_handler()
    if handler is not None:
        return handler

    handler = BufferHandler(get_buffer(), level=level)
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > level or root.level == logging.NOTSET:
        root.setLevel(level)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).propagate = True
    return handler


def get_logs(
    tail: int = 200,
    level: str | None = None,
    logger_prefix: str | None = None,
    after_seq: int | None = None,
) -> list[dict]:
    return [
        e.to_dict()
        for e in get_buffer().entries(
            tail=tail, min_level=level, logger_prefix=logger_prefix, after_seq=after_seq
        )
    ]


def get_capture_level() -> str:
    handler = _installed_handler()
    if handler is None:
        return logging.getLevelName(logging.getLogger().getEffectiveLevel())
    return logging.getLevelName(handler.level)


def set_capture_level(level_name: str) -> str:
    """Change the capture level; raises ``ValueError`` for unknown names."""
    level_name = (level_name or "").upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {', '.join(VALID_LEVELS)}")

    numeric = logging.getLevelName(level_name)
    handler = install_handler(level=numeric)
    handler.setLevel(numeric)
    root = logging.getLogger()
    if root.level > numeric:
        root.setLevel(numeric)
    return level_name
