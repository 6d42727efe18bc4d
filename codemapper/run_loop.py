"""Session around the loop graph: scan, restore, persist, pause, retry and run.

One CodeMapperSession owns one RunState. Both the HTTP app and the CLI drive the loop
through the session; nothing else mutates the state.
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from codemapper.infrastructure.audit import error_detail_from_exception, log_audit_step
from codemapper.models.state import FileRecord, ProcessingStatus, RunState
from codemapper.services.scanner import scan_directory
from codemapper.services.snapshot import (
    SnapshotError,
    apply_saved_state,
    decode_snapshot,
    read_snapshot,
    restore_snapshot,
    write_snapshot,
)
from codemapper.services.tree_builder import build_directory_tree
from codemapper.workflow import CancellationToken, RunOutcome, run_graph

if TYPE_CHECKING:
    from codemapper.config import Settings
    from codemapper.services.generation import GenerateFn

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Project"


class RunAlreadyActiveError(Exception):
    """Raised when start/resume is requested while the loop is running."""

    def __init__(self, message: str = "A run is already active.") -> None:
        self.message = message
        super().__init__(message)


def project_name_for(root: str | Path) -> str:
    """Project name = basename of the resolved target directory."""
    return Path(root).resolve().name or DEFAULT_PROJECT_NAME


class CodeMapperSession:
    """One project's run: scanned files, run state, snapshot and output locations."""

    def __init__(
        self,
        root: str | Path,
        state: RunState,
        settings: Settings,
        *,
        state_path: str | Path | None = None,
        output_path: str | Path | None = None,
        generate: GenerateFn | None = None,
        run_id: str | None = None,
    ) -> None:
        self.root = Path(root)
        self.state = state
        self.settings = settings
        self.state_path = Path(state_path if state_path is not None else settings.STATE_FILE)
        self.output_path = Path(output_path if output_path is not None else settings.OUTPUT_FILE)
        self.generate = generate
        self.run_id = run_id or str(uuid.uuid4())
        self.project_tree = build_directory_tree(f.path for f in state.files)
        self._token: CancellationToken | None = None
        self._run_seq = 0

    @classmethod
    def from_directory(
        cls,
        root: str | Path,
        settings: Settings,
        *,
        state_path: str | Path | None = None,
        output_path: str | Path | None = None,
        generate: GenerateFn | None = None,
        restore: bool = True,
    ) -> "CodeMapperSession":
        """Scan root, build a fresh RunState and, if asked, restore a matching snapshot.

        Raises:
            ScanError: root is missing, not a directory, or unreadable. No session is built.
        """
        scanned = scan_directory(root, settings.SUPPORTED_EXTENSIONS, settings.IGNORED_DIRS)
        state = RunState.from_files(
            project_name_for(root),
            [FileRecord(path=f.path, size=f.size) for f in scanned],
        )
        state.add_log(f"Loaded {len(state.files)} supported files.", "info")
        session = cls(
            root,
            state,
            settings,
            state_path=state_path,
            output_path=output_path,
            generate=generate,
        )
        if restore:
            session.restore()
        return session

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def restore(self) -> bool:
        """Apply the snapshot at state_path when it belongs to this project."""
        t0 = time.perf_counter()
        applied = restore_snapshot(self.state, self.state_path)
        log_audit_step(
            self.run_id,
            "snapshot_restore",
            "success",
            input_summary={"state_path": str(self.state_path), "project_name": self.state.project_name},
            output_summary={
                "applied": applied,
                "processed_count": self.state.processed_count,
                "cursor": self.state.cursor,
            },
            duration_ms=(time.perf_counter() - t0) * 1000,
            audit_path=self.settings.AUDIT_LOG_PATH,
        )
        return applied

    def load_snapshot(self, *, path: str | Path | None = None, raw: str | None = None) -> bool:
        """Apply a saved state from a file or from snapshot text to this session.

        Returns False when the saved state belongs to another project (state left as is).

        Raises:
            RunAlreadyActiveError: the loop is running.
            SnapshotError: the file is missing or unreadable, or the text is not a valid snapshot.
        """
        if self.state.is_running:
            raise RunAlreadyActiveError("Pause the run before loading a saved state.")
        source = str(path) if path is not None else "request body"
        t0 = time.perf_counter()
        try:
            if path is not None:
                saved = read_snapshot(path)
                if saved is None:
                    raise SnapshotError(f"Snapshot not found: {path}")
            else:
                saved = decode_snapshot(raw or "")
        except SnapshotError as e:
            self.state.add_log(f"Failed to load state file. ({e.message})", "warn")
            log_audit_step(
                self.run_id,
                "snapshot_load",
                "failure",
                input_summary={"source": source},
                error_detail={"message": e.message},
                audit_path=self.settings.AUDIT_LOG_PATH,
            )
            raise
        applied = apply_saved_state(self.state, saved)
        if applied:
            self.state.add_log(f"State loaded from {source}.", "success")
        log_audit_step(
            self.run_id,
            "snapshot_load",
            "success",
            input_summary={"source": source, "project_name": saved.project_name},
            output_summary={"applied": applied, "processed_count": self.state.processed_count, "cursor": self.state.cursor},
            duration_ms=(time.perf_counter() - t0) * 1000,
            audit_path=self.settings.AUDIT_LOG_PATH,
        )
        return applied

    def update_config(self, update: dict[str, object]) -> list[str]:
        """Replace provider and batching settings; the next planned batch uses the new values.

        update is keyed by Settings field names. Returns the changed field names.
        """
        if not update:
            return []
        self.settings = self.settings.model_copy(update=update)
        changed = sorted(update)
        self.state.add_log(f"Configuration updated: {', '.join(changed)}.", "info")
        log_audit_step(
            self.run_id,
            "config_update",
            "success",
            input_summary={"fields": changed},
            audit_path=self.settings.AUDIT_LOG_PATH,
        )
        return changed

    def persist(self) -> None:
        """Write the snapshot and the Overview diagram text. Write errors propagate."""
        write_snapshot(self.state, self.state_path, self.settings.SNAPSHOT_LOG_TAIL)
        self.output_path.write_text(self.state.diagrams.overview, encoding="utf-8")

    def clear_snapshot(self) -> bool:
        """Remove the saved snapshot. Returns False when there was none."""
        if not self.state_path.exists():
            return False
        self.state_path.unlink()
        self.state.add_log("Saved progress cleared.", "info")
        return True

    def pause(self) -> None:
        """Request a cooperative pause; an in-flight batch still completes and is applied."""
        if self._token is not None and not self._token.cancelled:
            self._token.cancel()
            self.state.add_log("Pausing after the current batch...", "info")

    def retry(self, index: int) -> FileRecord:
        """Reset one Failed file to Pending and rewind the cursor. Raises RetryNotAllowedError."""
        record = self.state.reset_for_retry(index)
        self.state.add_log(f"Retrying {record.path}...", "info")
        return record

    def begin(self) -> CancellationToken:
        """Mark the run active and hand out its pause token. Raises RunAlreadyActiveError."""
        if self.state.is_running:
            raise RunAlreadyActiveError()
        self.state.is_running = True
        self._token = CancellationToken()
        return self._token

    async def run(self, token: CancellationToken | None = None) -> RunOutcome:
        """Drive the loop until all files are processed, a pause is honoured, or a batch fails.

        Call begin() first to obtain the token from outside (HTTP start); when token is None
        the run is started here.
        """
        if token is None:
            token = self.begin()
        state = self.state
        state.add_log("Starting analysis...", "info")
        self._run_seq += 1
        try:
            return await run_graph(self, token, f"{self.run_id}:{self._run_seq}")
        except Exception as e:
            log_audit_step(
                self.run_id,
                "run_loop",
                "failure",
                error_detail=error_detail_from_exception(e, "codemapper.run_loop.CodeMapperSession.run"),
                audit_path=self.settings.AUDIT_LOG_PATH,
            )
            raise
        finally:
            state.is_running = False
            self._token = None

    def summary(self) -> dict[str, int | str]:
        """Counts for the final report (CLI) and status views."""
        state = self.state
        return {
            "project_name": state.project_name,
            "total": len(state.files),
            "processed": state.processed_count,
            "completed": state.count_status(ProcessingStatus.COMPLETED),
            "skipped": state.count_status(ProcessingStatus.SKIPPED),
            "failed": state.count_status(ProcessingStatus.FAILED),
            "diagrams": len(state.diagrams),
        }
