"""
Run tree builder.

``BaseTracer`` turns callback events into a tree of ``Run`` nodes. Runs are
kept in ``run_map`` while open and attached to their parent's ``child_runs``
at start time. When a root run closes, the finished tree is handed to
``persist_run``.

Protocol anomalies never raise:
- a start event naming an unknown parent records the run as a new root
- a terminal event for an unknown or already closed run is ignored
- a parent closing before its children force-closes the open children
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from runtree.callbacks.base import BaseCallbackHandler
from runtree.core.schemas import Run, RunType, utc_now

logger = logging.getLogger(__name__)

ORPHANED_CHILD_ERROR = "Parent run {parent_id} ended before this run completed"


def _run_name(serialized: Optional[Dict[str, Any]], default: str) -> str:
    """Label for a run, taken from its serialized descriptor when possible."""
    if not serialized:
        return default
    name = serialized.get("name")
    if name:
        return str(name)
    ids = serialized.get("id")
    if isinstance(ids, (list, tuple)) and ids:
        return str(ids[-1])
    return default


def _as_mapping(value: Any, key: str) -> Dict[str, Any]:
    """Coerce an opaque result into an outputs mapping."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return {key: value}


def _format_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class BaseTracer(BaseCallbackHandler, ABC):
    """
    Callback handler that assembles events into run trees.

    Subclasses decide what happens to a finished tree by implementing
    ``persist_run``. Runs may be opened and closed concurrently for
    different run ids; all table mutations happen under one lock.
    """

    name = "base_tracer"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.run_map: Dict[str, Run] = {}
        self._execution_orders: Dict[str, int] = {}
        self._lock = threading.Lock()

    @abstractmethod
    async def persist_run(self, run: Run) -> None:
        """Export a finished root run together with all of its descendants."""

    def _on_run_start(self, run: Run) -> None:
        """Called after a run has been recorded."""

    def _on_run_end(self, run: Run) -> None:
        """Called after a run has been closed, before it is persisted."""

    # Run table

    def _next_execution_order(self, trace_id: str) -> int:
        order = self._execution_orders.get(trace_id, 0) + 1
        self._execution_orders[trace_id] = order
        return order

    def _start_run(
        self,
        run_type: RunType,
        serialized: Optional[Dict[str, Any]],
        inputs: Dict[str, Any],
        run_id: Any,
        parent_run_id: Any = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Run]:
        run_id = str(run_id)
        parent_id = str(parent_run_id) if parent_run_id is not None else None

        with self._lock:
            if run_id in self.run_map:
                logger.warning(f"Run {run_id} already started, ignoring start event")
                return None

            parent = self.run_map.get(parent_id) if parent_id else None
            if parent_id and parent is None:
                logger.warning(
                    f"Parent run {parent_id} not found for run {run_id}, "
                    f"recording it as a root run"
                )

            trace_id = parent.trace_id if parent else run_id
            run = Run(
                id=run_id,
                name=_run_name(serialized, run_type.value),
                start_time=utc_now(),
                run_type=run_type,
                extra=dict(extra or {}),
                execution_order=self._next_execution_order(trace_id),
                serialized=dict(serialized or {}),
                inputs=inputs,
                parent_run_id=parent_id,
                trace_id=trace_id,
            )
            if parent is not None:
                parent.child_runs.append(run)
            self.run_map[run_id] = run

        self._on_run_start(run)
        return run

    def _close_open_children(self, run: Run, end_time) -> List[Run]:
        """Close every still-open descendant of ``run``. Caller holds the lock."""
        closed = []
        for child in run.child_runs:
            closed.extend(self._close_open_children(child, end_time))
            if child.end_time is None:
                self.run_map.pop(child.id, None)
                child.end_time = end_time
                child.error = ORPHANED_CHILD_ERROR.format(parent_id=run.id)
                closed.append(child)
        return closed

    async def _end_run(
        self,
        run_id: Any,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[Run]:
        run_id = str(run_id)

        with self._lock:
            run = self.run_map.pop(run_id, None)
            if run is None:
                logger.warning(
                    f"Run {run_id} is not open, ignoring terminal event"
                )
                return None

            end_time = utc_now()
            orphans = self._close_open_children(run, end_time)
            run.end_time = end_time
            if error is not None:
                run.error = error
            else:
                run.outputs = outputs if outputs is not None else {}

            is_root = run.trace_id == run.id
            if is_root:
                self._execution_orders.pop(run.trace_id, None)

        for orphan in orphans:
            logger.warning(
                f"Run {orphan.id} was still open when parent run {run_id} ended"
            )
            self._on_run_end(orphan)
        self._on_run_end(run)

        if is_root:
            await self.persist_run(run)
        return run

    def _annotate(
        self, run_id: Any, event_name: str, llm_only: bool = False, **kwargs: Any
    ) -> None:
        run_id = str(run_id)
        with self._lock:
            run = self.run_map.get(run_id)
            if run is None:
                logger.warning(f"Run {run_id} is not open, ignoring {event_name}")
                return
            if llm_only and run.run_type != RunType.LLM:
                logger.warning(
                    f"Run {run_id} is a {run.run_type.value} run, ignoring {event_name}"
                )
                return
            run.add_event(event_name, **kwargs)

    # LLM hooks

    def on_llm_start(
        self,
        serialized: Dict[str, Any],
        prompts: List[str],
        *,
        run_id: Any,
        parent_run_id: Any = None,
        extra_params: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        self._start_run(
            RunType.LLM,
            serialized,
            {"prompts": list(prompts)},
            run_id,
            parent_run_id,
            extra=extra_params,
        )

    def on_chat_model_start(
        self,
        serialized: Dict[str, Any],
        messages: List[List[Any]],
        *,
        run_id: Any,
        parent_run_id: Any = None,
        extra_params: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        self._start_run(
            RunType.LLM,
            serialized,
            {"messages": [list(batch) for batch in messages]},
            run_id,
            parent_run_id,
            extra=extra_params,
        )

    def on_llm_new_token(
        self, token: str, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        self._annotate(run_id, "new_token", llm_only=True, token=token)

    async def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        await self._end_run(run_id, error=_format_error(error))

    async def on_llm_end(
        self, response: Any, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        await self._end_run(run_id, outputs=_as_mapping(response, "response"))

    # Chain hooks

    def on_chain_start(
        self,
        serialized: Dict[str, Any],
        inputs: Dict[str, Any],
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        self._start_run(
            RunType.CHAIN,
            serialized,
            _as_mapping(inputs, "input"),
            run_id,
            parent_run_id,
        )

    async def on_chain_error(
        self,
        error: BaseException,
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        await self._end_run(run_id, error=_format_error(error))

    async def on_chain_end(
        self,
        outputs: Dict[str, Any],
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        await self._end_run(run_id, outputs=_as_mapping(outputs, "output"))

    # Tool hooks

    def on_tool_start(
        self,
        serialized: Dict[str, Any],
        input_str: str,
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        self._start_run(
            RunType.TOOL,
            serialized,
            {"input": input_str},
            run_id,
            parent_run_id,
        )

    async def on_tool_error(
        self,
        error: BaseException,
        *,
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        await self._end_run(run_id, error=_format_error(error))

    async def on_tool_end(
        self, output: str, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        await self._end_run(run_id, outputs={"output": output})

    # Annotations

    def on_text(
        self, text: str, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        self._annotate(run_id, "text", text=text)

    def on_agent_action(
        self, action: Any, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        self._annotate(run_id, "agent_action", action=action)

    def on_agent_end(
        self, finish: Any, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any
    ) -> None:
        self._annotate(run_id, "agent_end", finish=finish)
