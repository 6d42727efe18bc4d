"""Tests for codemapper.services.batch_planner: directory coherence, size limits, skip-only plans."""

import random

import pytest

from codemapper.models.state import FileRecord, ProcessingStatus
from codemapper.services.batch_planner import module_key_for_directory, plan_bytes, plan_next_batch

KB = 1024
LIMITS = {"max_files_per_batch": 5, "max_batch_bytes": 50 * KB, "max_single_file_bytes": 100 * KB}


def _files(*specs: tuple[str, int]) -> list[FileRecord]:
    return [FileRecord(path=p, size=s) for p, s in specs]


def test_batch_stops_at_directory_boundary() -> None:
    """a/x.go, a/y.go, b/z.go (10KB each) → [a/x.go, a/y.go], module 'a'."""
    files = _files(("a/x.go", 10 * KB), ("a/y.go", 10 * KB), ("b/z.go", 10 * KB))
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0, 1)
    assert plan.module_key == "a"
    assert plan.next_cursor == 2
    assert not plan.skip_only
    assert plan_bytes(files, plan) == 20 * KB


def test_oversized_first_file_is_skip_only() -> None:
    """One 200KB file with a 100KB ceiling → skip-only plan for that file."""
    files = _files(("big.py", 200 * KB), ("small.py", 1 * KB))
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0,)
    assert plan.skip_only
    assert plan.module_key == "root"


def test_oversized_file_after_admitted_files_ends_batch() -> None:
    files = _files(("a/1.py", 1 * KB), ("a/2.py", 200 * KB), ("a/3.py", 1 * KB))
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0,)
    assert not plan.skip_only


def test_oversized_first_file_in_new_directory_wins_over_directory_check() -> None:
    files = _files(("a/1.py", 1 * KB), ("b/big.py", 200 * KB))
    plan = plan_next_batch(files, 1, **LIMITS)
    assert plan.indices == (1,)
    assert plan.skip_only
    assert plan.module_key == "b"


def test_cumulative_size_limit_ends_batch() -> None:
    files = _files(("m/1.go", 30 * KB), ("m/2.go", 30 * KB))
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0,)


def test_single_file_over_batch_bytes_is_admitted_alone() -> None:
    """A 70KB file (under the 100KB ceiling, over the 50KB batch limit) becomes a batch of one."""
    files = _files(("m/big.go", 70 * KB), ("m/next.go", 1 * KB))
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0,)
    assert not plan.skip_only


def test_max_files_per_batch() -> None:
    files = _files(*[(f"m/{i}.go", 1 * KB) for i in range(8)])
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0, 1, 2, 3, 4)
    assert plan.next_cursor == 5


def test_terminal_files_are_stepped_over() -> None:
    files = _files(("m/0.go", KB), ("m/1.go", KB), ("m/2.go", KB))
    files[0].status = ProcessingStatus.COMPLETED
    files[1].status = ProcessingStatus.SKIPPED
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (2,)


def test_failed_files_are_planned_again() -> None:
    files = _files(("m/0.go", KB), ("m/1.go", KB))
    files[0].status = ProcessingStatus.FAILED
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.indices == (0, 1)


def test_empty_plan_when_only_terminal_files_remain() -> None:
    files = _files(("m/0.go", KB), ("m/1.go", KB))
    for f in files:
        f.status = ProcessingStatus.COMPLETED
    plan = plan_next_batch(files, 0, **LIMITS)
    assert plan.is_empty
    assert plan.next_cursor == 2


def test_cursor_past_end_gives_empty_plan() -> None:
    files = _files(("m/0.go", KB))
    plan = plan_next_batch(files, 5, **LIMITS)
    assert plan.is_empty


def test_zero_max_files_is_rejected() -> None:
    with pytest.raises(ValueError):
        plan_next_batch(_files(("a.go", 1)), 0, max_files_per_batch=0, max_batch_bytes=1, max_single_file_bytes=1)


def test_module_key_for_directory() -> None:
    assert module_key_for_directory("") == "root"
    assert module_key_for_directory(None) == "root"
    assert module_key_for_directory("src/api") == "src/api"


def test_directory_named_like_a_reserved_key_gets_its_own_module() -> None:
    files = _files(("System Overview/a.go", 1 * KB), ("root/b.go", 1 * KB), ("c.go", 1 * KB))
    keys = []
    cursor = 0
    while cursor < len(files):
        plan = plan_next_batch(files, cursor, **LIMITS)
        keys.append(plan.module_key)
        cursor = plan.next_cursor
    assert keys == ["./System Overview", "./root", "root"]
    assert module_key_for_directory("System Overview/sub") == "System Overview/sub"


def test_plans_never_span_directories_or_exceed_limits() -> None:
    """Random trees: every plan is single-directory and within limits unless it has one file."""
    rng = random.Random(7)
    dirs = ["", "a", "a/b", "c"]
    for _ in range(50):
        files = sorted(
            _files(*[
                (f"{rng.choice(dirs)}/f{i}.py".lstrip("/"), rng.randint(1, 120) * KB)
                for i in range(rng.randint(1, 25))
            ]),
            key=lambda f: f.path,
        )
        cursor = 0
        while True:
            plan = plan_next_batch(files, cursor, **LIMITS)
            if plan.is_empty:
                break
            batch = [files[i] for i in plan.indices]
            assert len({f.directory for f in batch}) == 1
            assert len(batch) <= LIMITS["max_files_per_batch"]
            if len(batch) > 1:
                assert sum(f.size for f in batch) <= LIMITS["max_batch_bytes"]
                assert all(f.size <= LIMITS["max_single_file_bytes"] for f in batch)
            if plan.skip_only:
                assert len(batch) == 1 and batch[0].size > LIMITS["max_single_file_bytes"]
            for f in batch:
                f.status = ProcessingStatus.SKIPPED if plan.skip_only else ProcessingStatus.COMPLETED
            assert plan.next_cursor > cursor
            cursor = plan.next_cursor
        assert all(f.is_terminal for f in files)
