"""
Tracer exporting finished run trees to a remote collector.

Each root run is converted into a nested ``RunCreate`` record and submitted
with a single ``POST /runs``. The tenant and session that scope the record
are resolved against the collector on first use and cached for the lifetime
of the tracer.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic_core import to_jsonable_python

from runtree.core.async_caller import AsyncCaller
from runtree.core.config import TracerConfig, get_config
from runtree.core.errors import (
    NoTenantFound,
    RunPersistFailed,
    SessionCreateFailed,
    TenantLookupFailed,
)
from runtree.core.schemas import Run, RunCreate, TracerSession
from runtree.tracers.base import BaseTracer
from runtree.utils.env import get_runtime_environment

logger = logging.getLogger(__name__)


class CollectorTracer(BaseTracer):
    """
    Tracer that persists run trees to the collector over HTTP.

    Args:
        config: TracerConfig instance (uses env config if not provided)
        endpoint: Collector endpoint (overrides config)
        api_key: API key sent as ``x-api-key`` (overrides config)
        tenant_id: Tenant owning the session (overrides config)
        session_name: Session the runs are grouped under (overrides config)
        session_extra: Metadata stored with the session (overrides config)
        example_id: Reference example attached to root runs (overrides config)
        caller: AsyncCaller for collector requests (built from config if omitted)
        transport: httpx transport, mainly for tests
    """

    name = "collector_tracer"

    def __init__(
        self,
        config: Optional[TracerConfig] = None,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        session_name: Optional[str] = None,
        session_extra: Optional[Dict[str, Any]] = None,
        example_id: Optional[str] = None,
        caller: Optional[AsyncCaller] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        if config is None:
            config = get_config()

        self.config = config
        self.endpoint = (endpoint or config.endpoint).rstrip("/")
        self.api_key = api_key or config.api_key
        self.tenant_id = tenant_id or config.tenant_id
        self.session_name = session_name or config.session_name
        self.session_extra = session_extra if session_extra is not None else config.session_extra
        self.example_id = example_id or config.example_id
        self.caller = caller or AsyncCaller(
            max_concurrency=config.max_concurrency,
            max_retries=config.max_retries,
        )

        self.headers = {"Content-Type": "application/json"}
        if self.api_key:
            self.headers["x-api-key"] = self.api_key

        self._transport = transport
        self._client = httpx.AsyncClient(
            timeout=config.timeout,
            headers=self.headers,
            transport=transport,
        )
        self.session: Optional[TracerSession] = None
        self._tenant_lock = asyncio.Lock()
        self._session_lock = asyncio.Lock()
        self._closed = False

    def _init_kwargs(self) -> Dict[str, Any]:
        # The copy opens its own HTTP client and run table
        kwargs = super()._init_kwargs()
        kwargs.update(
            config=self.config,
            endpoint=self.endpoint,
            api_key=self.api_key,
            tenant_id=self.tenant_id,
            session_name=self.session_name,
            session_extra=self.session_extra,
            example_id=self.example_id,
            caller=self.caller,
            transport=self._transport,
        )
        return kwargs

    async def ensure_tenant_id(self) -> str:
        """
        Return the tenant id, looking it up on first use.

        Raises:
            TenantLookupFailed: If the tenant listing returns a non-2xx response
            NoTenantFound: If the collector lists no tenants
        """
        if self.tenant_id:
            return self.tenant_id

        async with self._tenant_lock:
            # Another caller may have resolved it while we waited
            if self.tenant_id:
                return self.tenant_id

            url = f"{self.endpoint}/tenants"
            response = await self.caller.call(self._client.get, url)
            if not response.is_success:
                raise TenantLookupFailed(
                    response.status_code, response.text, response.reason_phrase
                )

            tenants = response.json()
            if not tenants:
                raise NoTenantFound(url)

            self.tenant_id = str(tenants[0]["id"])
            logger.debug(f"Using tenant {self.tenant_id}")
            return self.tenant_id

    async def ensure_session(self) -> TracerSession:
        """
        Return the tracer session, creating or fetching it on first use.

        Raises:
            SessionCreateFailed: If the upsert returns a non-2xx response
        """
        if self.session is not None:
            return self.session

        async with self._session_lock:
            if self.session is not None:
                return self.session

            tenant_id = await self.ensure_tenant_id()
            response = await self.caller.call(
                self._client.post,
                f"{self.endpoint}/sessions",
                params={"upsert": "true"},
                json={
                    "name": self.session_name,
                    "tenant_id": tenant_id,
                    "extra": self.session_extra,
                },
            )
            if not response.is_success:
                raise SessionCreateFailed(
                    response.status_code, response.text, response.reason_phrase
                )

            self.session = TracerSession.model_validate(response.json())
            logger.debug(f"Using session {self.session.name} ({self.session.id})")
            return self.session

    @staticmethod
    def convert_to_create(
        run: Run,
        session_id: str,
        reference_example_id: Optional[str] = None,
        runtime: Optional[Dict[str, Any]] = None,
    ) -> RunCreate:
        """
        Convert a run tree into the collector's wire record.

        Args:
            run: Root of the (sub)tree to convert
            session_id: Session shared by every record in the tree
            reference_example_id: Attached to this record only, not to children
            runtime: Environment descriptor stored under ``extra["runtime"]``

        Returns:
            RunCreate with ``child_runs`` converted recursively
        """
        if runtime is None:
            runtime = get_runtime_environment()

        extra = dict(run.extra)
        if run.events:
            extra["events"] = list(run.events)
        extra["runtime"] = runtime

        return RunCreate(
            id=run.id,
            name=run.name,
            start_time=run.start_time,
            end_time=run.end_time,
            run_type=run.run_type,
            reference_example_id=reference_example_id,
            extra=extra,
            execution_order=run.execution_order,
            serialized=run.serialized,
            error=run.error,
            inputs=run.inputs,
            outputs=run.outputs if run.outputs is not None else {},
            session_id=session_id,
            child_runs=[
                CollectorTracer.convert_to_create(child, session_id, runtime=runtime)
                for child in run.child_runs
            ],
        )

    async def _convert_to_create(
        self, run: Run, example_id: Optional[str] = None
    ) -> RunCreate:
        session = await self.ensure_session()
        return self.convert_to_create(run, session.id, reference_example_id=example_id)

    async def persist_run(self, run: Run) -> None:
        """
        Submit a finished root run to the collector.

        Raises:
            RunPersistFailed: If the collector returns a non-2xx response
        """
        if self._closed:
            logger.warning(f"Tracer is closed, dropping run {run.id}")
            return

        record = await self._convert_to_create(run, self.example_id)
        payload = to_jsonable_python(record, fallback=str)

        response = await self.caller.call(
            self._client.post, f"{self.endpoint}/runs", json=payload
        )
        if not response.is_success:
            raise RunPersistFailed(
                response.status_code, response.text, response.reason_phrase
            )

        logger.debug(f"Persisted run {run.id} ({run.name})")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._closed:
            return

        self._closed = True
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
