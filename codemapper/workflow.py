"""Batch loop graph: Planner → (advance | Skip | Generator → Persist) → Planner, until done, paused or failed."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from codemapper.models.state import LoopGraphState
from codemapper.nodes import generator_node, planner_node, skip_node
from codemapper.services.batch_planner import BatchPlan

if TYPE_CHECKING:
    from codemapper.run_loop import CodeMapperSession

logger = logging.getLogger(__name__)

# Supersteps per file in the worst case (planner + skip, or planner + generator + persist).
_STEPS_PER_FILE = 4
_MIN_RECURSION_LIMIT = 100


class RunOutcome(str, Enum):
    """How a run ended: every file processed, paused on request, or stopped on a failed batch."""

    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class CancellationToken:
    """Cooperative pause flag, checked once per loop iteration."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Ask the loop to stop before planning its next batch."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._cancelled


def _route_after_plan(plan: BatchPlan) -> str:
    """Return the next step for a plan: advance (nothing admitted), skip, or generate."""
    if plan.is_empty:
        return "advance"
    if plan.skip_only:
        return "skip"
    return "generate"


def _route_after_planner(state: LoopGraphState, cancelled: bool) -> str:
    """Pause wins over everything else; otherwise follow the planner's route."""
    if cancelled:
        return "paused"
    return state.get("route") or "done"


def _route_after_generator(state: LoopGraphState) -> str:
    return "failed" if state.get("outcome") == RunOutcome.FAILED.value else "persist"


def _plan_to_state(plan: BatchPlan) -> dict[str, Any]:
    return {
        "indices": list(plan.indices),
        "module_key": plan.module_key,
        "next_cursor": plan.next_cursor,
        "skip_only": plan.skip_only,
    }


def _plan_from_state(state: LoopGraphState) -> BatchPlan:
    raw = state.get("plan") or {}
    return BatchPlan(
        indices=tuple(raw.get("indices") or ()),
        module_key=raw.get("module_key", ""),
        next_cursor=raw.get("next_cursor", 0),
        skip_only=bool(raw.get("skip_only")),
    )


def recursion_limit_for(file_count: int) -> int:
    """Graph step budget for one run over file_count files."""
    return max(_MIN_RECURSION_LIMIT, _STEPS_PER_FILE * (file_count + 1) + 25)


def build_graph(session: CodeMapperSession, token: CancellationToken) -> Any:
    """Build and compile the loop graph. Nodes close over the session and read its settings per step.

    Every node mutates session.state only through RunState methods or the node functions;
    the graph state carries the route and the current plan.
    """

    async def planner(state: LoopGraphState) -> dict[str, Any]:
        # Suspension point: a pause request lands here between iterations.
        await asyncio.sleep(0)
        run_state = session.state
        if token.cancelled:
            return {"route": "paused", "plan": None}
        if run_state.cursor >= len(run_state.files):
            return {"route": "done", "plan": None}
        plan = planner_node(run_state, session.settings, session.run_id)
        return {"route": _route_after_plan(plan), "plan": _plan_to_state(plan)}

    def route_after_planner(state: LoopGraphState) -> str:
        return _route_after_planner(state, token.cancelled)

    async def advance(state: LoopGraphState) -> dict[str, Any]:
        plan = _plan_from_state(state)
        run_state = session.state
        run_state.cursor = max(plan.next_cursor, run_state.cursor + 1)
        return {"plan": None}

    async def skip(state: LoopGraphState) -> dict[str, Any]:
        skip_node(session.state, _plan_from_state(state), session.settings, session.run_id)
        return {"plan": None}

    async def generator(state: LoopGraphState) -> dict[str, Any]:
        ok = await generator_node(
            session.state,
            _plan_from_state(state),
            session.settings,
            root=session.root,
            project_tree=session.project_tree,
            run_id=session.run_id,
            generate=session.generate,
        )
        if not ok:
            return {"outcome": RunOutcome.FAILED.value, "plan": None}
        return {"plan": None}

    async def persist(state: LoopGraphState) -> dict[str, Any]:
        session.persist()
        return {}

    async def complete(state: LoopGraphState) -> dict[str, Any]:
        session.persist()
        session.state.add_log("All files processed!", "success")
        return {"outcome": RunOutcome.COMPLETED.value}

    async def paused(state: LoopGraphState) -> dict[str, Any]:
        session.state.add_log("Analysis paused.", "warn")
        return {"outcome": RunOutcome.PAUSED.value}

    workflow: StateGraph[LoopGraphState] = StateGraph(LoopGraphState)
    workflow.add_node("planner", planner)
    workflow.add_node("advance", advance)
    workflow.add_node("skip", skip)
    workflow.add_node("generator", generator)
    workflow.add_node("persist", persist)
    workflow.add_node("complete", complete)
    workflow.add_node("paused", paused)

    workflow.add_edge(START, "planner")
    workflow.add_conditional_edges(
        "planner",
        route_after_planner,
        {
            "advance": "advance",
            "skip": "skip",
            "generate": "generator",
            "done": "complete",
            "paused": "paused",
        },
    )
    workflow.add_edge("advance", "planner")
    workflow.add_edge("skip", "planner")
    workflow.add_conditional_edges("generator", _route_after_generator, {"persist": "persist", "failed": END})
    workflow.add_edge("persist", "planner")
    workflow.add_edge("complete", END)
    workflow.add_edge("paused", END)

    return workflow.compile(checkpointer=MemorySaver())


async def run_graph(session: CodeMapperSession, token: CancellationToken, thread_id: str) -> RunOutcome:
    """Invoke the loop graph until END and return how the run ended."""
    graph = build_graph(session, token)
    initial: LoopGraphState = {"route": "", "plan": None, "outcome": ""}
    config = {
        "configurable": {"thread_id": thread_id},
        "recursion_limit": recursion_limit_for(len(session.state.files)),
    }
    final_state = await graph.ainvoke(initial, config=config)
    outcome = final_state.get("outcome") or RunOutcome.COMPLETED.value
    logger.info(
        "Loop graph finished",
        extra={"run_id": session.run_id, "thread_id": thread_id, "outcome": outcome},
    )
    return RunOutcome(outcome)
