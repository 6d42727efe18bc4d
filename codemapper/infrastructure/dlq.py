"""Dead Letter Queue: append failed batches so they can be reviewed and retried later."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def write_to_dlq(
    run_id: str,
    step_name: str,
    request_summary: dict[str, Any],
    error_detail: dict[str, Any],
    *,
    dlq_path: str | None = None,
) -> None:
    """Append one failed batch to the DLQ file (append-only).

    Args:
        run_id: Session UUID for traceability.
        step_name: Step that failed (generator).
        request_summary: Batch info (module, paths, bytes; never file contents).
        error_detail: Error message, where, error_classification.
        dlq_path: Target file (Settings.DLQ_PATH). Empty disables the write.

    Returns:
        None. Write errors are logged and dropped so the run state is never affected.
    """
    if not dlq_path:
        return
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "run_id": run_id,
        "step_name": step_name,
        "request_summary": dict(request_summary),
        "error_detail": dict(error_detail),
    }
    try:
        with open(dlq_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.debug("DLQ write to %s failed: %s", dlq_path, e)
