"""Batch planner: choose the next directory-coherent, size-bounded batch from the cursor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from codemapper.models.state import FileRecord
from codemapper.services.diagram_store import OVERVIEW_DIAGRAM_KEY, ROOT_MODULE_KEY

# Directory names that would otherwise share a key with the Overview or the root-level module.
_RESERVED_KEYS = frozenset({OVERVIEW_DIAGRAM_KEY, ROOT_MODULE_KEY})


@dataclass(frozen=True)
class BatchPlan:
    """One planned generation call. Never persisted.

    indices: admitted file indices, ascending.
    module_key: diagram key of the batch's directory ('root' for root-level files).
    next_cursor: where the scan should resume (past the last admitted index, or past the
        terminal files that were stepped over when nothing was admitted).
    skip_only: a single file above the per-file ceiling; marked Skipped, never generated.
    """

    indices: tuple[int, ...]
    module_key: str
    next_cursor: int
    skip_only: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.indices


def module_key_for_directory(directory: str | None) -> str:
    """Module diagram key for a directory path ('' or None -> 'root').

    A top-level directory literally named like a reserved key gets a './' prefix.
    """
    if not directory:
        return ROOT_MODULE_KEY
    if directory in _RESERVED_KEYS:
        return f"./{directory}"
    return directory


def plan_next_batch(
    files: Sequence[FileRecord],
    cursor: int,
    *,
    max_files_per_batch: int,
    max_batch_bytes: int,
    max_single_file_bytes: int,
) -> BatchPlan:
    """Walk files from cursor and group the next batch.

    Rules, checked in this order for each candidate:
    1. Completed/Skipped files are stepped over.
    2. A file in a different directory than the batch's first file ends the batch (not included).
    3. A file above max_single_file_bytes is admitted alone if the batch is empty (skip-only),
       otherwise ends the batch.
    4. A file that would push the batch over max_batch_bytes is admitted alone if the batch
       is empty, otherwise ends the batch.
    5. Anything else is admitted; stop at max_files_per_batch.

    Returns:
        BatchPlan; empty indices when every remaining file is terminal.
    """
    if max_files_per_batch < 1:
        raise ValueError("max_files_per_batch must be at least 1")

    indices: list[int] = []
    batch_bytes = 0
    batch_dir: str | None = None
    skip_only = False
    idx = max(cursor, 0)

    while idx < len(files) and len(indices) < max_files_per_batch:
        record = files[idx]
        if record.is_terminal:
            idx += 1
            continue

        directory = record.directory
        if batch_dir is None:
            batch_dir = directory
        elif directory != batch_dir and indices:
            break

        if record.size > max_single_file_bytes:
            if not indices:
                indices.append(idx)
                skip_only = True
            break

        if batch_bytes + record.size > max_batch_bytes:
            if not indices:
                indices.append(idx)
            break

        indices.append(idx)
        batch_bytes += record.size
        idx += 1

    next_cursor = indices[-1] + 1 if indices else idx
    return BatchPlan(
        indices=tuple(indices),
        module_key=module_key_for_directory(batch_dir),
        next_cursor=next_cursor,
        skip_only=skip_only,
    )


def plan_bytes(files: Sequence[FileRecord], plan: BatchPlan) -> int:
    """Total size of a plan's files in bytes."""
    return sum(files[i].size for i in plan.indices)
