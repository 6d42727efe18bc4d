"""Planner node: pick the next batch from the cursor. READ → DO → (no WRITE) → CONTROL."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from codemapper.infrastructure.audit import log_audit_step
from codemapper.services.batch_planner import BatchPlan, plan_bytes, plan_next_batch

if TYPE_CHECKING:
    from codemapper.config import Settings
    from codemapper.models.state import RunState

logger = logging.getLogger(__name__)


def planner_node(state: RunState, settings: Settings, run_id: str) -> BatchPlan:
    """READ files, cursor; DO plan_next_batch with the configured limits; return the plan.

    The plan is a pure result; the run loop decides what to write.
    """
    t0 = time.perf_counter()
    plan = plan_next_batch(
        state.files,
        state.cursor,
        max_files_per_batch=settings.BATCH_COUNT,
        max_batch_bytes=settings.batch_size_bytes,
        max_single_file_bytes=settings.max_file_size_bytes,
    )
    duration_ms = (time.perf_counter() - t0) * 1000
    paths = [state.files[i].path for i in plan.indices]
    log_audit_step(
        run_id,
        "planner",
        "success",
        input_summary={
            "file_count": len(state.files),
            "cursor": state.cursor,
            "processed_count": state.processed_count,
            "max_files": settings.BATCH_COUNT,
            "max_batch_bytes": settings.batch_size_bytes,
            "max_single_file_bytes": settings.max_file_size_bytes,
        },
        output_summary={
            "selected_count": len(paths),
            "module": plan.module_key,
            "batch_bytes": plan_bytes(state.files, plan),
            "skip_only": plan.skip_only,
            "next_cursor": plan.next_cursor,
            "paths_sample": paths[:5],
        },
        duration_ms=duration_ms,
        audit_path=settings.AUDIT_LOG_PATH,
    )
    return plan
