"""Skip node: an oversized file is marked Skipped and counted, no generation call."""

from __future__ import annotations

from typing import TYPE_CHECKING

from codemapper.infrastructure.audit import log_audit_step

if TYPE_CHECKING:
    from codemapper.config import Settings
    from codemapper.models.state import RunState
    from codemapper.services.batch_planner import BatchPlan


def skip_node(state: RunState, plan: BatchPlan, settings: Settings, run_id: str) -> None:
    """READ the skip-only plan; WRITE Skipped status, processed_count + 1, cursor past the file."""
    index = plan.indices[0]
    record = state.files[index]
    state.mark_skipped(index)
    state.add_log(
        f"Skipped large file: {record.path} ({record.size / 1024:.1f}KB > {settings.MAX_FILE_SIZE_KB}KB)",
        "warn",
    )
    log_audit_step(
        run_id,
        "skip",
        "success",
        input_summary={"path": record.path, "size": record.size, "limit": settings.max_file_size_bytes},
        output_summary={"processed_count": state.processed_count, "cursor": state.cursor},
        audit_path=settings.AUDIT_LOG_PATH,
    )
