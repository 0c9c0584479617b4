"""
Per-application deployment log collection.

Each deployment run gets a LogCollector that keeps an ordered, leveled record
of what happened (phase transitions, tool output lines, errors) so that the
HTTP layer can show it to the operator. Every entry is also forwarded to the
module logger.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    SYSTEM = "system"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


_PYTHON_LEVELS = {
    LogLevel.SYSTEM: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.SUCCESS: logging.INFO,
}


@dataclass
class LogEntry:
    message: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
        }


class LogCollector:
    """Bounded, ordered log buffer for one application."""

    def __init__(self, application_id: str, max_entries: int = 2000):
        self.application_id = application_id
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)

    def add(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        level = LogLevel(level)
        self._entries.append(LogEntry(message=message, level=level))
        logger.log(_PYTHON_LEVELS[level], f"[{self.application_id}] {message}")

    def info(self, message: str) -> None:
        self.add(message, LogLevel.INFO)

    def warning(self, message: str) -> None:
        self.add(message, LogLevel.WARNING)

    def error(self, message: str) -> None:
        self.add(message, LogLevel.ERROR)

    def success(self, message: str) -> None:
        self.add(message, LogLevel.SUCCESS)

    def system(self, message: str) -> None:
        self.add(message, LogLevel.SYSTEM)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def lines(self) -> List[str]:
        return [entry.message for entry in self._entries]


OUTPUT_CHUNK_SIZE = 64 * 1024
MAX_OUTPUT_LINE = 1024 * 1024


async def iter_output_lines(stream, chunk_size: int = OUTPUT_CHUNK_SIZE):
    """
    Yield decoded, non-empty lines from a subprocess output stream.

    Reads fixed-size chunks rather than using readline(), so arbitrarily
    long lines (pull progress bars) never stop the pipe from draining.
    Lines longer than MAX_OUTPUT_LINE are emitted in pieces.
    """
    pending = b""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        pending += chunk
        *complete, pending = pending.split(b"\n")
        while len(pending) >= MAX_OUTPUT_LINE:
            complete.append(pending[:MAX_OUTPUT_LINE])
            pending = pending[MAX_OUTPUT_LINE:]
        for raw in complete:
            text = raw.decode(errors="replace").rstrip("\r")
            if text:
                yield text
    text = pending.decode(errors="replace").rstrip("\r")
    if text:
        yield text


class CollectorRegistry:
    """Holds the most recent collector per application."""

    def __init__(self):
        self._collectors: Dict[str, LogCollector] = {}

    def new(self, application_id: str) -> LogCollector:
        """Start a fresh collector for a run, replacing the previous one."""
        collector = LogCollector(application_id)
        self._collectors[application_id] = collector
        return collector

    def get(self, application_id: str) -> Optional[LogCollector]:
        return self._collectors.get(application_id)

    def discard(self, application_id: str) -> None:
        self._collectors.pop(application_id, None)


# Singleton instance
collector_registry = CollectorRegistry()
