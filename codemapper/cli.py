#!/usr/bin/env python3
"""
Headless CodeMapper run.

Scans a target directory, resumes from codemapper_state.json when it belongs to the same
project, and runs batches until every file is processed or a batch fails. After every
successful batch the Overview diagram is written to diagram.mmd and the snapshot is saved.

  codemapper ./my-project                : run (or resume) against ./my-project
  codemapper ./my-project --fresh        : ignore any saved progress
  LLM_PROVIDER=openai OPENAI_BASE_URL=http://localhost:11434/v1 codemapper ./my-project

Exit codes: 0 all files processed, 1 bad target / missing credential / scan error,
2 stopped on a failed batch (re-run to retry the failed files).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence

from codemapper.config import Settings, get_settings
from codemapper.infrastructure.logging_config import configure_logging
from codemapper.run_loop import CodeMapperSession, RunOutcome
from codemapper.services.generation import GenerateFn
from codemapper.services.scanner import ScanError

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_BATCH_FAILED = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codemapper",
        description="Incrementally build C4 (Mermaid) architecture diagrams of a local codebase",
    )
    parser.add_argument("target_dir", help="Project directory to analyze")
    parser.add_argument("--fresh", action="store_true", help="Ignore saved progress and start from the first file")
    parser.add_argument("--state-file", default=None, help="Snapshot path (default: STATE_FILE, codemapper_state.json)")
    parser.add_argument("--output", default=None, help="Overview output path (default: OUTPUT_FILE, diagram.mmd)")
    return parser


def _print_summary(session: CodeMapperSession, outcome: RunOutcome) -> None:
    s = session.summary()
    print("\n" + "=" * 70)
    print(f"CodeMapper: {s['project_name']} ({outcome.value})")
    print("=" * 70)
    print(f"  processed: {s['processed']}/{s['total']}")
    print(f"  completed: {s['completed']}")
    print(f"  skipped:   {s['skipped']}")
    print(f"  failed:    {s['failed']}")
    print(f"  diagrams:  {s['diagrams']}")
    print(f"  overview:  {session.output_path}")
    print(f"  snapshot:  {session.state_path}")
    if s["failed"]:
        for f in session.state.files:
            if f.error:
                print(f"  ! {f.path}: {f.error}")
    print()


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    generate: GenerateFn | None = None,
) -> int:
    args = _build_parser().parse_args(argv)
    settings = settings or get_settings()
    configure_logging(settings.LOG_FORMAT)

    target = Path(args.target_dir)
    if not target.is_dir():
        print(f"Error: target directory not found: {target}", file=sys.stderr)
        return EXIT_USAGE
    if generate is None:
        missing = settings.missing_credential()
        if missing:
            print(f"Error: {missing}", file=sys.stderr)
            return EXIT_USAGE

    try:
        session = CodeMapperSession.from_directory(
            target,
            settings,
            state_path=args.state_file,
            output_path=args.output,
            generate=generate,
            restore=not args.fresh,
        )
    except ScanError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    print(f"\n*** CodeMapper: {session.state.project_name}: {len(session.state.files)} files ***")
    outcome = asyncio.run(session.run())
    _print_summary(session, outcome)
    if outcome is RunOutcome.FAILED:
        return EXIT_BATCH_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
