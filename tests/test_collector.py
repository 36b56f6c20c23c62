"""
Tests for exporting run trees to the collector.
"""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from runtree.callbacks.manager import CallbackManager
from runtree.core.async_caller import AsyncCaller
from runtree.core.config import TracerConfig
from runtree.core.errors import (
    NoTenantFound,
    RunPersistFailed,
    SessionCreateFailed,
    TenantLookupFailed,
)
from runtree.core.schemas import Run, RunType
from runtree.tracers.collector import CollectorTracer

ENDPOINT = "http://collector.test"
SESSION = {
    "id": "session-1",
    "tenant_id": "tenant-1",
    "name": "default",
    "start_time": "2024-01-01T00:00:00+00:00",
}


class FakeCollector:
    """Records requests and answers them like the collector would."""

    def __init__(self, tenants=None, tenant_status=200, session_status=200, run_status=200, run_body=""):
        self.tenants = [{"id": "tenant-1"}] if tenants is None else tenants
        self.tenant_status = tenant_status
        self.session_status = session_status
        self.run_status = run_status
        self.run_body = run_body
        self.requests = []

    def paths(self):
        return [request.url.path for request in self.requests]

    def bodies(self, path):
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/tenants":
            if self.tenant_status != 200:
                return httpx.Response(self.tenant_status, text="forbidden")
            return httpx.Response(200, json=self.tenants)
        if request.url.path == "/sessions":
            if self.session_status != 200:
                return httpx.Response(self.session_status, text="session exploded")
            body = json.loads(request.content)
            return httpx.Response(200, json={**SESSION, "name": body["name"], "tenant_id": body["tenant_id"]})
        if request.url.path == "/runs":
            return httpx.Response(self.run_status, text=self.run_body)
        return httpx.Response(404)


def make_tracer(collector, **kwargs):
    config = TracerConfig(endpoint=ENDPOINT, api_key=kwargs.pop("api_key", None))
    return CollectorTracer(
        config=config,
        caller=AsyncCaller(max_retries=0),
        transport=httpx.MockTransport(collector),
        **kwargs,
    )


def make_run(run_id, run_type=RunType.CHAIN, order=1, children=None, **kwargs):
    return Run(
        id=run_id,
        name=f"{run_type.value}-{run_id}",
        start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_time=datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
        run_type=run_type,
        execution_order=order,
        trace_id="root",
        child_runs=children or [],
        **kwargs,
    )


class TestTenantResolution:
    """Tests for ensure_tenant_id."""

    @pytest.mark.asyncio
    async def test_configured_tenant_skips_lookup(self):
        collector = FakeCollector()
        tracer = make_tracer(collector, tenant_id="configured")

        assert await tracer.ensure_tenant_id() == "configured"
        assert collector.requests == []

    @pytest.mark.asyncio
    async def test_first_listed_tenant_is_cached(self):
        collector = FakeCollector(tenants=[{"id": "t-1"}, {"id": "t-2"}])
        tracer = make_tracer(collector)

        assert await tracer.ensure_tenant_id() == "t-1"
        assert await tracer.ensure_tenant_id() == "t-1"
        assert collector.paths() == ["/tenants"]

    @pytest.mark.asyncio
    async def test_empty_listing_raises_no_tenant_found(self):
        collector = FakeCollector(tenants=[])
        tracer = make_tracer(collector)

        with pytest.raises(NoTenantFound, match="No tenants found"):
            await tracer.ensure_session()

        assert collector.paths() == ["/tenants"]
        assert tracer.tenant_id is None
        assert tracer.session is None

    @pytest.mark.asyncio
    async def test_lookup_failure_carries_status_and_body(self):
        collector = FakeCollector(tenant_status=403)
        tracer = make_tracer(collector)

        with pytest.raises(TenantLookupFailed) as exc_info:
            await tracer.ensure_tenant_id()

        assert exc_info.value.status_code == 403
        assert exc_info.value.body == "forbidden"
        assert "403" in str(exc_info.value)
        assert "forbidden" in str(exc_info.value)


class TestSessionResolution:
    """Tests for ensure_session."""

    @pytest.mark.asyncio
    async def test_session_created_once(self):
        collector = FakeCollector()
        tracer = make_tracer(collector, session_name="experiments", session_extra={"team": "ml"})

        first = await tracer.ensure_session()
        second = await tracer.ensure_session()

        assert first is second
        assert first.id == "session-1"
        assert collector.paths() == ["/tenants", "/sessions"]

        request = collector.requests[1]
        assert request.method == "POST"
        assert request.url.params["upsert"] == "true"
        assert json.loads(request.content) == {
            "name": "experiments",
            "tenant_id": "tenant-1",
            "extra": {"team": "ml"},
        }

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self):
        collector = FakeCollector()
        tracer = make_tracer(collector)

        sessions = await asyncio.gather(*(tracer.ensure_session() for _ in range(5)))

        assert all(session is sessions[0] for session in sessions)
        assert collector.paths() == ["/tenants", "/sessions"]

    @pytest.mark.asyncio
    async def test_create_failure_carries_body(self):
        collector = FakeCollector(session_status=500)
        tracer = make_tracer(collector)

        with pytest.raises(SessionCreateFailed, match="session exploded") as exc_info:
            await tracer.ensure_session()

        assert exc_info.value.status_code == 500
        assert tracer.session is None

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        collector = FakeCollector()
        tracer = make_tracer(collector, api_key="secret")

        await tracer.ensure_session()

        for request in collector.requests:
            assert request.headers["x-api-key"] == "secret"
            assert request.headers["content-type"] == "application/json"


class TestConvertToCreate:
    """Tests for the wire record conversion."""

    def test_three_level_tree(self):
        grandchild = make_run("tool", RunType.TOOL, order=3)
        child = make_run("llm", RunType.LLM, order=2, children=[grandchild])
        root = make_run("root", order=1, children=[child], extra={"tag": "a"})

        record = CollectorTracer.convert_to_create(
            root, "session-1", reference_example_id="example-1", runtime={"runtime": "python"}
        )

        records = [record, record.child_runs[0], record.child_runs[0].child_runs[0]]
        assert [r.id for r in records] == ["root", "llm", "tool"]
        assert [r.run_type for r in records] == [RunType.CHAIN, RunType.LLM, RunType.TOOL]
        assert [r.execution_order for r in records] == [1, 2, 3]
        assert {r.session_id for r in records} == {"session-1"}
        assert [r.reference_example_id for r in records] == ["example-1", None, None]
        assert all(r.extra["runtime"] == {"runtime": "python"} for r in records)
        assert record.extra["tag"] == "a"

    def test_outputs_default_and_optional_fields_dropped(self):
        run = make_run("root", error="ValueError: boom")

        data = CollectorTracer.convert_to_create(run, "session-1").model_dump(mode="json")

        assert data["outputs"] == {}
        assert data["error"] == "ValueError: boom"
        assert "reference_example_id" not in data
        assert data["extra"]["runtime"]["library"] == "runtree"

        clean = CollectorTracer.convert_to_create(make_run("ok", outputs={"a": 1}), "s")
        clean_data = clean.model_dump(mode="json")
        assert "error" not in clean_data
        assert clean_data["outputs"] == {"a": 1}

    def test_run_is_not_mutated(self):
        run = make_run("root", extra={"tag": "a"})
        run.add_event("text", text="hello")

        record = CollectorTracer.convert_to_create(run, "session-1")

        assert run.extra == {"tag": "a"}
        assert record.extra["events"][0]["name"] == "text"


class TestPersistRun:
    """Tests for run submission."""

    @pytest.mark.asyncio
    async def test_persist_posts_nested_record(self):
        collector = FakeCollector()
        tracer = make_tracer(collector, example_id="example-1")
        manager = CallbackManager.configure(inheritable_callbacks=[tracer])

        chain = await manager.handle_chain_start({"name": "qa"}, {"q": "?"}, run_id="root")
        llm = await chain.get_child().handle_llm_start({"name": "gpt"}, ["?"], run_id="llm")
        await llm.handle_llm_new_token("!")
        await llm.handle_llm_end({"text": "!"})
        await chain.handle_chain_end({"a": "!"})

        assert collector.paths() == ["/tenants", "/sessions", "/runs"]
        (record,) = collector.bodies("/runs")
        assert record["id"] == "root"
        assert record["run_type"] == "chain"
        assert record["session_id"] == "session-1"
        assert record["reference_example_id"] == "example-1"
        assert record["outputs"] == {"a": "!"}

        (child,) = record["child_runs"]
        assert child["id"] == "llm"
        assert child["run_type"] == "llm"
        assert child["session_id"] == "session-1"
        assert child["execution_order"] == 2
        assert "reference_example_id" not in child
        assert child["extra"]["events"][0]["kwargs"] == {"token": "!"}

    @pytest.mark.asyncio
    async def test_session_reused_across_traces(self):
        collector = FakeCollector()
        tracer = make_tracer(collector)

        for run_id in ("first", "second"):
            tracer.on_chain_start({}, {}, run_id=run_id)
            await tracer.on_chain_end({}, run_id=run_id)

        assert collector.paths() == ["/tenants", "/sessions", "/runs", "/runs"]

    @pytest.mark.asyncio
    async def test_persist_failure_carries_status_and_body(self):
        collector = FakeCollector(run_status=500, run_body="db unavailable")
        tracer = make_tracer(collector)

        with pytest.raises(RunPersistFailed) as exc_info:
            await tracer.persist_run(make_run("root"))

        assert exc_info.value.status_code == 500
        assert "500" in str(exc_info.value)
        assert "db unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_change_result(self):
        collector = FakeCollector(run_status=500, run_body="db unavailable")
        tracer = make_tracer(collector)
        manager = CallbackManager(handlers=[tracer])

        async def computation():
            run_manager = await manager.handle_chain_start({}, {"x": 1})
            await run_manager.handle_chain_end({"y": 2})
            return 42

        assert await computation() == 42
        assert tracer.run_map == {}
        assert collector.paths()[-1] == "/runs"

    @pytest.mark.asyncio
    async def test_retryable_status_is_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request.url.path)
            if len(attempts) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json=SESSION)

        tracer = CollectorTracer(
            config=TracerConfig(endpoint=ENDPOINT, tenant_id="tenant-1"),
            caller=AsyncCaller(max_retries=2, backoff_base=0, jitter=False),
            transport=httpx.MockTransport(handler),
        )
        await tracer.ensure_session()
        assert attempts == ["/sessions", "/sessions"]

    @pytest.mark.asyncio
    async def test_closed_tracer_drops_runs(self):
        collector = FakeCollector()
        async with make_tracer(collector) as tracer:
            pass

        await tracer.persist_run(make_run("root"))
        assert collector.requests == []


class TestCopy:
    """Tests for copying a collector tracer."""

    @pytest.mark.asyncio
    async def test_copy_keeps_settings(self):
        collector = FakeCollector()
        tracer = make_tracer(
            collector, api_key="secret", session_name="nightly", example_id="example-1", ignore_llm=True
        )
        copied = tracer.copy()

        assert isinstance(copied, CollectorTracer)
        assert copied.endpoint == ENDPOINT
        assert copied.api_key == "secret"
        assert copied.session_name == "nightly"
        assert copied.example_id == "example-1"
        assert copied.ignore_llm
        assert copied.caller is tracer.caller

    @pytest.mark.asyncio
    async def test_closing_copy_leaves_original_usable(self):
        collector = FakeCollector()
        tracer = make_tracer(collector)
        copied = tracer.copy()

        copied.on_chain_start({}, {}, run_id="on-copy")
        assert tracer.run_map == {}

        await copied.close()
        session = await tracer.ensure_session()

        assert session.id == "session-1"
        assert not tracer._closed
        assert copied._closed
