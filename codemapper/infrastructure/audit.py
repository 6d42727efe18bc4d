"""Audit trail for CodeMapper runs.

One JSON line per event, append-only, each stamped with a SHA-256 over the entry body so
edits are detectable. Execution steps (planner, skip, batch generation, snapshot restore)
record inputs, outputs, errors and duration, so a whole run can be reconstructed by run_id.
Audit writes never break the run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _timestamp_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_audit(
    event_type: str,
    resource: str,
    action: str,
    result: str,
    run_id: str,
    metadata: dict[str, Any] | None = None,
    *,
    audit_path: str | None = None,
) -> None:
    """Append one audit entry (JSON line). Hash computed over entry without log_hash.

    No-op when audit_path is empty; write errors are logged at debug level and dropped.
    """
    if not audit_path:
        return
    entry = {
        "timestamp": _timestamp_utc(),
        "event_type": event_type,
        "actor_id": "codemapper",
        "actor_type": "system",
        "resource": resource,
        "action": action,
        "result": result,
        "run_id": run_id,
        "metadata": dict(metadata) if metadata else {},
    }
    line_bytes = json.dumps(entry, ensure_ascii=False).encode("utf-8")
    entry["log_hash"] = hashlib.sha256(line_bytes).hexdigest()
    try:
        with open(audit_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.debug("Audit write to %s failed: %s", audit_path, e)


def log_audit_step(
    run_id: str,
    step_name: str,
    result: str,
    *,
    input_summary: dict[str, Any] | None = None,
    output_summary: dict[str, Any] | None = None,
    error_detail: dict[str, Any] | None = None,
    duration_ms: float | None = None,
    audit_path: str | None = None,
) -> None:
    """Log one execution step of the run loop.

    Args:
        run_id: Session UUID shared by every step of one run.
        step_name: Logical step (planner, skip, generator, snapshot_restore).
        result: "success" or "failure".
        input_summary: Sanitized input summary (no secrets, no file contents).
        output_summary: Summary of what the step produced.
        error_detail: On failure, e.g. {"message": ..., "where": ..., "traceback": ...}.
        duration_ms: Optional elapsed time in milliseconds.
        audit_path: Target file (Settings.AUDIT_LOG_PATH).
    """
    meta: dict[str, Any] = {}
    if input_summary is not None:
        meta["input_summary"] = dict(input_summary)
    if output_summary is not None:
        meta["output_summary"] = dict(output_summary)
    if error_detail is not None:
        meta["error_detail"] = dict(error_detail)
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 2)
    log_audit(
        event_type="execution_step",
        resource=step_name,
        action="call",
        result=result,
        run_id=run_id,
        metadata=meta,
        audit_path=audit_path,
    )


def error_detail_from_exception(exc: BaseException, where: str) -> dict[str, Any]:
    """Build error_detail for log_audit_step: message, where, traceback, classification."""
    return {
        "message": getattr(exc, "message", None) or str(exc),
        "where": where,
        "error_classification": "transient" if getattr(exc, "is_transient", False) else "permanent",
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip(),
    }


def read_run_steps(run_id: str, *, audit_path: str) -> list[dict[str, Any]]:
    """Load the execution_step entries for one run, in file order."""
    steps: list[dict[str, Any]] = []
    try:
        with open(audit_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if entry.get("run_id") == run_id and entry.get("event_type") == "execution_step":
                    steps.append(entry)
    except FileNotFoundError:
        return []
    return steps
