"""Generator node: read batch files, call the generation adapter, commit or fail the batch."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from codemapper.infrastructure.audit import error_detail_from_exception, log_audit_step
from codemapper.infrastructure.dlq import write_to_dlq
from codemapper.services.batch_planner import plan_bytes
from codemapper.services.generation import FileInput, GenerateFn, generate_c4_update

if TYPE_CHECKING:
    from codemapper.config import Settings
    from codemapper.models.state import FileRecord, RunState
    from codemapper.services.batch_planner import BatchPlan

logger = logging.getLogger(__name__)


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


async def read_batch_files(root: Path, records: Sequence[FileRecord]) -> list[FileInput]:
    """Read each batch file off the event loop thread; one file at a time, in batch order."""
    inputs: list[FileInput] = []
    for record in records:
        text = await asyncio.to_thread(_read_text, root / record.path)
        inputs.append(FileInput(name=record.path, content=text))
    return inputs


async def generator_node(
    state: RunState,
    plan: BatchPlan,
    settings: Settings,
    *,
    root: Path,
    project_tree: str,
    run_id: str,
    generate: GenerateFn | None = None,
) -> bool:
    """READ plan, current diagrams; DO one generation call; WRITE Completed + diagrams, or Failed.

    Returns:
        True when the batch was committed, False when it failed (the caller stops the run).
    """
    t0 = time.perf_counter()
    indices = list(plan.indices)
    records = [state.files[i] for i in indices]
    module_key = plan.module_key
    dispatch_cursor = state.cursor
    request_summary = {
        "module": module_key,
        "paths": [r.path for r in records],
        "batch_bytes": plan_bytes(state.files, plan),
    }

    state.add_log(f"Analyzing {len(records)} files in '{module_key}'...", "info")
    state.mark_processing(indices)

    try:
        inputs = await read_batch_files(root, records)
        result = await generate_c4_update(
            state.diagrams.overview,
            state.diagrams.get(module_key),
            inputs,
            project_tree,
            module_key,
            provider_config=settings.provider_config(),
            generate=generate,
            max_file_chars=settings.MAX_FILE_CONTENT_CHARS,
        )
    except Exception as e:
        message = getattr(e, "message", None) or str(e) or type(e).__name__
        state.fail_batch(indices, message)
        state.add_log(f"Error processing batch: {message}", "error")
        duration_ms = (time.perf_counter() - t0) * 1000
        detail = error_detail_from_exception(e, "codemapper.nodes.generator")
        log_audit_step(
            run_id,
            "generator",
            "failure",
            input_summary=request_summary,
            error_detail=detail,
            duration_ms=duration_ms,
            audit_path=settings.AUDIT_LOG_PATH,
        )
        write_to_dlq(run_id, "generator", request_summary, detail, dlq_path=settings.DLQ_PATH)
        return False

    changed = state.commit_batch(
        indices,
        result.overview_diagram,
        module_key,
        result.module_diagram,
        dispatch_cursor,
    )
    if not result.module_updated:
        state.add_log(f"No module diagram in reply for '{module_key}'; kept previous version.", "warn")
    state.add_log(f"Updated diagrams for '{module_key}'", "success")
    duration_ms = (time.perf_counter() - t0) * 1000
    log_audit_step(
        run_id,
        "generator",
        "success",
        input_summary=request_summary,
        output_summary={
            "changed_diagrams": changed,
            "overview_updated": result.overview_updated,
            "module_updated": result.module_updated,
            "processed_count": state.processed_count,
            "cursor": state.cursor,
        },
        duration_ms=duration_ms,
        audit_path=settings.AUDIT_LOG_PATH,
    )
    return True
