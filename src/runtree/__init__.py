"""
runtree - Run tree tracing for chains, LLM calls and tools.
"""

import asyncio
import logging
from typing import Optional, Set

__version__ = "0.1.0"

from runtree.callbacks.base import BaseCallbackHandler
from runtree.callbacks.manager import CallbackManager
from runtree.core.async_caller import AsyncCaller
from runtree.core.config import TracerConfig, get_config, set_config
from runtree.core.errors import (
    CollectorRequestError,
    NoTenantFound,
    RunPersistFailed,
    SessionCreateFailed,
    TenantLookupFailed,
    TracerError,
)
from runtree.core.schemas import Run, RunCreate, RunType, TracerSession
from runtree.tracers.base import BaseTracer
from runtree.tracers.collector import CollectorTracer
from runtree.tracers.console import ConsoleTracer

__all__ = [
    "enable_tracing",
    "disable_tracing",
    "is_enabled",
    "get_tracer",
    "get_callback_manager",
    "AsyncCaller",
    "BaseCallbackHandler",
    "BaseTracer",
    "CallbackManager",
    "CollectorTracer",
    "ConsoleTracer",
    "TracerConfig",
    "Run",
    "RunCreate",
    "RunType",
    "TracerSession",
    "TracerError",
    "CollectorRequestError",
    "NoTenantFound",
    "TenantLookupFailed",
    "SessionCreateFailed",
    "RunPersistFailed",
]

logger = logging.getLogger(__name__)

_tracer: Optional[CollectorTracer] = None
_enabled = False
_close_tasks: Set["asyncio.Task[None]"] = set()


def enable_tracing(
    endpoint: Optional[str] = None,
    api_key: Optional[str] = None,
    tenant_id: Optional[str] = None,
    session_name: Optional[str] = None,
    config: Optional[TracerConfig] = None,
) -> CollectorTracer:
    """
    Enable tracing to the collector.

    Environment variables (used when not provided as parameters):
    - RUNTREE_ENDPOINT: Collector endpoint
    - RUNTREE_API_KEY: API key
    - RUNTREE_TENANT_ID: Tenant ID
    - RUNTREE_SESSION: Session name

    Args:
        endpoint: Override RUNTREE_ENDPOINT
        api_key: Override RUNTREE_API_KEY
        tenant_id: Override RUNTREE_TENANT_ID
        session_name: Override RUNTREE_SESSION
        config: Full configuration, replaces the environment configuration

    Returns:
        The active CollectorTracer
    """
    global _tracer, _enabled

    if _enabled:
        logger.warning("Tracing is already enabled")
        return _tracer

    try:
        if config is not None:
            set_config(config)
        tracer_config = get_config()

        _tracer = CollectorTracer(
            config=tracer_config,
            endpoint=endpoint,
            api_key=api_key,
            tenant_id=tenant_id,
            session_name=session_name,
        )
        _enabled = True

        logger.info(f"Tracing enabled, exporting to {_tracer.endpoint}")
        return _tracer

    except Exception as e:
        logger.error(f"Failed to enable tracing: {e}")
        raise


def _close_tracer_sync(tracer: CollectorTracer) -> None:
    """Helper to close the tracer's HTTP client from sync context."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop, create one to close the client
        try:
            asyncio.run(tracer.close())
        except Exception as e:
            logger.warning(f"Failed to close tracer properly: {e}")
        return

    task = asyncio.create_task(tracer.close())
    _close_tasks.add(task)
    task.add_done_callback(_on_close_done)


def _on_close_done(task: "asyncio.Task[None]") -> None:
    _close_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Failed to close tracer properly: {error}")


def disable_tracing() -> None:
    """Disable tracing and close the active tracer."""
    global _tracer, _enabled

    if not _enabled:
        return

    if _tracer is not None:
        _close_tracer_sync(_tracer)

    _tracer = None
    _enabled = False

    logger.info("Tracing disabled")


def is_enabled() -> bool:
    """Check if tracing is currently enabled."""
    return _enabled


def get_tracer() -> Optional[CollectorTracer]:
    """Get the current tracer instance."""
    return _tracer


def get_callback_manager() -> CallbackManager:
    """
    Get a callback manager for a new top-level execution.

    The active tracer, if any, is registered as an inheritable handler so
    every nested run is recorded in the same tree.
    """
    if _tracer is None:
        return CallbackManager()
    return CallbackManager.configure(inheritable_callbacks=[_tracer])
