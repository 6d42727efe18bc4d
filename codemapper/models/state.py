"""Run state for the CodeMapper batch loop (Planner → Skip / Generator → commit → snapshot).

A single RunState is owned by the session that drives the loop. Planner and generation
adapter only read it; every mutation goes through the methods below, and each batch's
status and diagram changes are applied in one synchronous call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Sequence, TypedDict

from codemapper.services.diagram_store import DiagramSet

logger = logging.getLogger(__name__)

LogLevel = Literal["info", "success", "warn", "error"]

_LOG_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ProcessingStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# Statuses the planner steps over and processed_count counts.
TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.SKIPPED})


class RetryNotAllowedError(Exception):
    """Raised when retry targets an index that is out of range or not Failed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class FileRecord:
    """One scanned file: POSIX path relative to the project root, size in bytes, status."""

    path: str
    size: int
    status: ProcessingStatus = ProcessingStatus.PENDING
    error: str | None = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def directory(self) -> str:
        """Containing directory ('' for root-level files)."""
        return self.path.rpartition("/")[0]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class LogEntry:
    timestamp: int  # epoch milliseconds
    level: LogLevel
    message: str


@dataclass
class RunState:
    """Mutable state of one run: ordered files, cursor, counters, diagrams, logs."""

    project_name: str
    files: list[FileRecord] = field(default_factory=list)
    cursor: int = 0
    processed_count: int = 0
    diagrams: DiagramSet = field(default_factory=DiagramSet)
    is_running: bool = False
    logs: list[LogEntry] = field(default_factory=list)

    @classmethod
    def from_files(cls, project_name: str, files: Sequence[FileRecord]) -> "RunState":
        """Build a fresh state with files in canonical (lexicographic path) order."""
        ordered = sorted(files, key=lambda f: f.path)
        return cls(project_name=project_name, files=list(ordered))

    # --- logs ---

    def add_log(self, message: str, level: LogLevel = "info") -> LogEntry:
        """Append a run log entry and mirror it to the stdlib logger."""
        entry = LogEntry(timestamp=int(time.time() * 1000), level=level, message=message)
        self.logs.append(entry)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", self.project_name, message)
        return entry

    # --- derived views ---

    def count_terminal(self) -> int:
        return sum(1 for f in self.files if f.is_terminal)

    def count_status(self, status: ProcessingStatus) -> int:
        return sum(1 for f in self.files if f.status is status)

    def processed_paths(self) -> list[str]:
        """Paths whose status is Completed or Skipped, in file order."""
        return [f.path for f in self.files if f.is_terminal]

    def first_open_index(self) -> int:
        """Index of the first non-terminal record, or len(files) when none is left."""
        for i, f in enumerate(self.files):
            if not f.is_terminal:
                return i
        return len(self.files)

    def index_of(self, path: str) -> int | None:
        for i, f in enumerate(self.files):
            if f.path == path:
                return i
        return None

    # --- transitions (called by the run loop only) ---

    def mark_processing(self, indices: Sequence[int]) -> None:
        for i in indices:
            self.files[i].status = ProcessingStatus.PROCESSING
            self.files[i].error = None

    def mark_skipped(self, index: int) -> None:
        """Skip-only plan: Skipped, counted, cursor moves past it."""
        record = self.files[index]
        if not record.is_terminal:
            self.processed_count += 1
        record.status = ProcessingStatus.SKIPPED
        record.error = None
        self.cursor = max(self.cursor, index + 1)

    def commit_batch(
        self,
        indices: Sequence[int],
        overview: str | None,
        module_key: str,
        module: str | None,
        dispatch_cursor: int,
    ) -> list[str]:
        """Apply a successful batch: statuses, diagrams, cursor, count. Returns changed diagram keys.

        dispatch_cursor is the cursor when the batch was planned. If a retry rewound the
        cursor while the call was in flight, the rewound position is kept.
        """
        for i in indices:
            record = self.files[i]
            if not record.is_terminal:
                self.processed_count += 1
            record.status = ProcessingStatus.COMPLETED
            record.error = None
        changed = self.diagrams.merge(overview, module_key, module)
        if self.cursor >= dispatch_cursor:
            self.cursor = max(indices) + 1
        return changed

    def fail_batch(self, indices: Sequence[int], message: str) -> None:
        """Apply a failed batch: every file Failed with the message; nothing else changes."""
        for i in indices:
            self.files[i].status = ProcessingStatus.FAILED
            self.files[i].error = message

    def reset_for_retry(self, index: int) -> FileRecord:
        """Reset one Failed record to Pending and rewind the cursor to min(cursor, index).

        Failed records are never part of processed_count, so the count is unchanged.
        """
        if not 0 <= index < len(self.files):
            raise RetryNotAllowedError(f"File index {index} is out of range (0..{len(self.files) - 1}).")
        record = self.files[index]
        if record.status is not ProcessingStatus.FAILED:
            raise RetryNotAllowedError(
                f"Only failed files can be retried; {record.path} is {record.status.value}."
            )
        record.status = ProcessingStatus.PENDING
        record.error = None
        self.cursor = min(self.cursor, index)
        return record


class LoopGraphState(TypedDict, total=False):
    """Per-step routing state for the batch loop graph.

    RunState stays the single writer of file statuses, diagrams and logs; the graph only
    carries what the next edge needs.
    """

    # Owner: Planner. advance | skip | generate | done | paused
    route: str
    # Owner: Planner. BatchPlan fields as plain values (indices, module_key, next_cursor, skip_only).
    plan: dict[str, Any] | None
    # Set by the terminal nodes: completed | paused | failed
    outcome: str
