"""Nodes of the batch loop (Planner, Skip, Generator)."""

from __future__ import annotations

from .generator import generator_node
from .planner import planner_node
from .skipper import skip_node

__all__ = [
    "planner_node",
    "skip_node",
    "generator_node",
]
