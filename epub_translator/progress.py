"""
Progress reporting for EPUB translation runs.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_LOG_WINDOW = 50

STATUS_IDLE = "idle"
STATUS_ANALYZING = "analyzing"
STATUS_RESUMING = "resuming"
STATUS_PROCESSING = "processing"
STATUS_RATE_LIMITED = "rate_limited"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_ERROR = "error"

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    """One line of the user-facing activity log."""

    timestamp: str
    text: str
    level: str = "info"  # info, success, warning, error


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only state of a run, emitted after every node and document transition."""

    documents_total: int
    documents_done: int
    percent_complete: float
    words_per_second: float
    eta_seconds: float | None
    token_usage: dict[str, int]
    status: str
    log_tail: tuple[LogEntry, ...] = ()
    document_index: int = -1
    node_index: int = -1
    total_words: int = 0
    current_document: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["log_tail"] = [asdict(entry) for entry in self.log_tail]
        return data


@dataclass
class ThroughputTracker:
    """Words translated over wall-clock time, with a linear ETA."""

    start_time: float = field(default_factory=time.monotonic)
    total_words: int = 0

    def add_words(self, count: int) -> None:
        self.total_words += max(0, count)

    def elapsed(self) -> float:
        return max(0.0, time.monotonic() - self.start_time)

    def words_per_second(self) -> float:
        elapsed = self.elapsed()
        return self.total_words / elapsed if elapsed > 0 else 0.0

    def eta_seconds(self, fraction_done: float) -> float | None:
        """Remaining time, extrapolating the elapsed time linearly."""
        if fraction_done <= 0:
            return None
        if fraction_done >= 1:
            return 0.0
        elapsed = self.elapsed()
        return elapsed * (1 - fraction_done) / fraction_done


def completion_fraction(
    document_index: int, node_index: int, node_count: int, documents_total: int
) -> float:
    """Overall completion: finished documents plus the share of the current one."""
    if documents_total <= 0:
        return 0.0
    within = (node_index + 1) / node_count if node_count > 0 else 1.0
    return min(1.0, (document_index + within) / documents_total)


class ProgressReporter:
    """Aggregates run telemetry into snapshots.

    Snapshots are delivered to synchronous listeners and, when a channel is
    given, put on an ``asyncio.Queue`` for consumers that prefer to pull.
    The log tail is capped to ``log_window`` entries.
    """

    def __init__(
        self,
        channel: asyncio.Queue | None = None,
        log_window: int = DEFAULT_LOG_WINDOW,
        usage_provider: Callable[[], dict[str, int]] | None = None,
    ):
        """
        Initialize the reporter.

        Args:
            channel: Optional queue receiving every snapshot
            log_window: Maximum number of retained log entries
            usage_provider: Callable returning the current token usage
        """
        self.channel = channel
        self.logs: deque[LogEntry] = deque(maxlen=log_window)
        self.usage_provider = usage_provider
        self.throughput = ThroughputTracker()
        self._listeners: list[Callable[[ProgressSnapshot], None]] = []

        self.documents_total = 0
        self.documents_done = 0
        self.status = STATUS_IDLE
        self.last_snapshot: ProgressSnapshot | None = None

    def subscribe(self, listener: Callable[[ProgressSnapshot], None]) -> None:
        self._listeners.append(listener)

    def start(self, documents_total: int) -> None:
        self.documents_total = documents_total
        self.throughput = ThroughputTracker()

    def log(self, text: str, level: str = "info") -> None:
        """Append to the activity log and mirror it to the Python logger."""
        self.logs.append(LogEntry(datetime.now().strftime("%H:%M:%S"), text, level))
        logger.log(_LEVELS.get(level, logging.INFO), text)

    def snapshot(
        self,
        document_index: int = -1,
        node_index: int = -1,
        node_count: int = 0,
        current_document: str = "",
        status: str | None = None,
    ) -> ProgressSnapshot:
        """Build a snapshot of the current state."""
        if status is not None:
            self.status = status

        if self.status == STATUS_COMPLETED:
            fraction = 1.0
        elif document_index >= 0:
            fraction = completion_fraction(
                document_index, node_index, node_count, self.documents_total
            )
        else:
            fraction = (
                self.documents_done / self.documents_total if self.documents_total else 0.0
            )

        return ProgressSnapshot(
            documents_total=self.documents_total,
            documents_done=self.documents_done,
            percent_complete=round(fraction * 100, 1),
            words_per_second=round(self.throughput.words_per_second(), 2),
            eta_seconds=self.throughput.eta_seconds(fraction),
            token_usage=dict(self.usage_provider()) if self.usage_provider else {},
            status=self.status,
            log_tail=tuple(self.logs),
            document_index=document_index,
            node_index=node_index,
            total_words=self.throughput.total_words,
            current_document=current_document,
        )

    def emit(self, snapshot: ProgressSnapshot) -> None:
        """Forward a snapshot to listeners and to the channel."""
        self.last_snapshot = snapshot
        for listener in self._listeners:
            listener(snapshot)
        if self.channel is not None:
            self.channel.put_nowait(snapshot)

    def report(self, **kwargs) -> ProgressSnapshot:
        """Build and emit a snapshot in one step."""
        snapshot = self.snapshot(**kwargs)
        self.emit(snapshot)
        return snapshot
