"""Tree builder: render relative paths as an ASCII directory tree for prompt context."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

BRANCH = "├── "
LAST_BRANCH = "└── "
PIPE_INDENT = "│   "
SPACE_INDENT = "    "

# Nested mapping: name -> child mapping for directories, None for files.
_Node = Dict[str, Optional["_Node"]]


def _build_nodes(paths: Iterable[str]) -> _Node:
    root: _Node = {}
    for p in paths:
        parts = [part for part in p.replace("\\", "/").split("/") if part]
        current = root
        for i, part in enumerate(parts):
            is_file = i == len(parts) - 1
            if part not in current:
                current[part] = None if is_file else {}
            elif current[part] is None and not is_file:
                current[part] = {}
            child = current[part]
            if child is None:
                break
            current = child
    return root


def _render(node: _Node, prefix: str, lines: List[str]) -> None:
    keys = sorted(node)
    for index, key in enumerate(keys):
        is_last = index == len(keys) - 1
        lines.append(f"{prefix}{LAST_BRANCH if is_last else BRANCH}{key}")
        child = node[key]
        if child is not None:
            _render(child, prefix + (SPACE_INDENT if is_last else PIPE_INDENT), lines)


def build_directory_tree(paths: Iterable[str]) -> str:
    """Build the ASCII tree for a path set. Keys are sorted at every level, so input order does not matter."""
    lines: List[str] = []
    _render(_build_nodes(paths), "", lines)
    return "\n".join(lines)
