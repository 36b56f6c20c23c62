"""
Run tree data model and the collector's wire records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_serializer


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunType(str, Enum):
    """Kinds of execution steps recorded in a run tree."""

    LLM = "llm"
    CHAIN = "chain"
    TOOL = "tool"


class RunStatus(str, Enum):
    """Lifecycle state of a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"


class BaseRun(BaseModel):
    """Fields shared by in-memory runs and their wire records."""

    id: str
    name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    run_type: RunType
    extra: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int
    serialized: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None


class Run(BaseRun):
    """
    One node of an in-progress or finished run tree.

    A run owns its children; ``parent_run_id`` and ``trace_id`` are only used
    to route events to the right open node and are not exported.
    """

    parent_run_id: Optional[str] = None
    trace_id: str
    child_runs: List["Run"] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        if self.end_time is None:
            return RunStatus.RUNNING
        if self.error is not None:
            return RunStatus.ERRORED
        return RunStatus.COMPLETED

    def add_event(self, name: str, **kwargs: Any) -> None:
        """Append an annotation (token, text, agent action) to the run."""
        self.events.append({"name": name, "time": utc_now(), "kwargs": kwargs})


class TracerSession(BaseModel):
    """A named grouping of runs under a tenant."""

    id: str
    tenant_id: str
    name: Optional[str] = None
    start_time: Optional[datetime] = None
    extra: Optional[Dict[str, Any]] = None


class RunCreate(BaseRun):
    """Run record as submitted to the collector's ingestion endpoint."""

    outputs: Dict[str, Any] = Field(default_factory=dict)
    reference_example_id: Optional[str] = None
    session_id: str
    child_runs: List["RunCreate"] = Field(default_factory=list)

    @model_serializer(mode="wrap")
    def _drop_unset_optionals(self, handler):
        data = handler(self)
        for key in ("reference_example_id", "error"):
            if data.get(key) is None:
                data.pop(key, None)
        return data
