"""
Tracer that logs run lifecycles instead of exporting them.
"""

import logging
from typing import Any, Dict, List

from runtree.core.schemas import Run
from runtree.tracers.base import BaseTracer

logger = logging.getLogger(__name__)


class ConsoleTracer(BaseTracer):
    """
    Logs one line per run start, end and error.

    Each line carries the run's breadcrumb path, e.g.
    ``[chain/end] [1:chain:agent > 2:llm:gpt] (1.20s)``.

    Args:
        level: Logging level used for lifecycle lines
    """

    name = "console_tracer"

    def __init__(self, level: int = logging.INFO, **kwargs: Any):
        super().__init__(**kwargs)
        self.level = level
        # Paths are fixed at start time, while every ancestor is still open
        self._paths: Dict[str, str] = {}

    def _init_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._init_kwargs()
        kwargs["level"] = self.level
        return kwargs

    def _breadcrumbs(self, run: Run) -> str:
        parts: List[str] = []
        current = run
        while current is not None:
            parts.append(
                f"{current.execution_order}:{current.run_type.value}:{current.name}"
            )
            if current.parent_run_id is None:
                break
            current = self.run_map.get(current.parent_run_id)
        return " > ".join(reversed(parts))

    def _on_run_start(self, run: Run) -> None:
        self._paths[run.id] = self._breadcrumbs(run)
        logger.log(
            self.level,
            f"[{run.run_type.value}/start] [{self._paths[run.id]}] inputs={run.inputs}",
        )

    def _on_run_end(self, run: Run) -> None:
        path = self._paths.pop(run.id, None) or self._breadcrumbs(run)
        elapsed = ""
        if run.end_time is not None:
            elapsed = f" ({(run.end_time - run.start_time).total_seconds():.2f}s)"

        if run.error is not None:
            logger.log(
                self.level,
                f"[{run.run_type.value}/error] [{path}]{elapsed} {run.error}",
            )
        else:
            logger.log(
                self.level,
                f"[{run.run_type.value}/end] [{path}]{elapsed} outputs={run.outputs}",
            )

    async def persist_run(self, run: Run) -> None:
        logger.debug(f"Trace {run.id} finished with {_count_runs(run)} runs")


def _count_runs(run: Run) -> int:
    return 1 + sum(_count_runs(child) for child in run.child_runs)
