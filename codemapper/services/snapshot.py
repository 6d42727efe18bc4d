"""Snapshot codec: persist and restore the resumable part of a RunState as JSON."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from codemapper.models.schemas import SavedLogEntry, SavedState
from codemapper.models.state import LogEntry, ProcessingStatus, RunState
from codemapper.services.diagram_store import DiagramSet

logger = logging.getLogger(__name__)

DEFAULT_LOG_TAIL = 50


class SnapshotError(Exception):
    """Raised when a snapshot cannot be read or does not match the expected shape."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def build_saved_state(state: RunState, log_tail: int = DEFAULT_LOG_TAIL) -> SavedState:
    """Project a RunState onto the persisted shape. Only the last log_tail log entries are kept."""
    logs = state.logs[-log_tail:] if log_tail > 0 else []
    return SavedState(
        project_name=state.project_name,
        processed_count=state.processed_count,
        current_file_index=state.cursor,
        diagrams=state.diagrams.as_dict(),
        logs=[SavedLogEntry(timestamp=e.timestamp, level=e.level, message=e.message) for e in logs],
        file_paths_processed=state.processed_paths(),
    )


def encode_snapshot(state: RunState, log_tail: int = DEFAULT_LOG_TAIL) -> str:
    """Serialize a RunState to the JSON snapshot text (camelCase keys)."""
    return build_saved_state(state, log_tail).model_dump_json(by_alias=True, indent=2)


def decode_snapshot(raw: str | bytes) -> SavedState:
    """Parse snapshot text. Raises SnapshotError on invalid JSON or wrong shape."""
    try:
        return SavedState.model_validate_json(raw)
    except ValidationError as e:
        raise SnapshotError(f"Invalid snapshot: {e.error_count()} validation error(s): {e.errors()[0]['msg']}") from e


def apply_saved_state(state: RunState, saved: SavedState) -> bool:
    """Apply a decoded snapshot to a freshly scanned state. Returns False if it belongs to another project.

    Records listed in filePathsProcessed become Completed; processed_count is recomputed
    from statuses and the cursor moves to the first record still open.
    """
    if saved.project_name != state.project_name:
        state.add_log(
            f"Saved state is for project '{saved.project_name}', not '{state.project_name}'. Starting fresh.",
            "warn",
        )
        return False

    processed = set(saved.file_paths_processed)
    for record in state.files:
        if record.path in processed:
            record.status = ProcessingStatus.COMPLETED
            record.error = None

    state.diagrams = DiagramSet(saved.diagrams)
    restored_logs = [LogEntry(timestamp=e.timestamp, level=e.level, message=e.message) for e in saved.logs]
    state.logs = restored_logs + state.logs
    state.processed_count = state.count_terminal()
    state.cursor = state.first_open_index()
    if state.processed_count != saved.processed_count:
        state.add_log(
            f"Saved processed count {saved.processed_count} does not match restored files "
            f"({state.processed_count}); using {state.processed_count}.",
            "warn",
        )
    state.add_log(
        f"Resuming from previous state ({state.processed_count} files processed).",
        "success",
    )
    return True


def write_snapshot(state: RunState, path: str | Path, log_tail: int = DEFAULT_LOG_TAIL) -> None:
    """Write the snapshot atomically (temp file + replace) so a crash never leaves half a file."""
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    try:
        tmp.write_text(encode_snapshot(state, log_tail), encoding="utf-8")
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_snapshot(path: str | Path) -> SavedState | None:
    """Read and decode a snapshot file. None when the file does not exist."""
    target = Path(path)
    if not target.exists():
        return None
    try:
        raw = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SnapshotError(f"Cannot read snapshot {target}: {e}") from e
    return decode_snapshot(raw)


def restore_snapshot(state: RunState, path: str | Path) -> bool:
    """Load path into state if it is a valid snapshot for the same project.

    A malformed snapshot is not fatal: a warning is logged and the state is left as scanned.
    """
    try:
        saved = read_snapshot(path)
    except SnapshotError as e:
        state.add_log(f"Could not parse existing state file {path}. Starting fresh. ({e.message})", "warn")
        return False
    if saved is None:
        return False
    return apply_saved_state(state, saved)
