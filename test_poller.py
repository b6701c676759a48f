"""Tests for the HTTP fetchers, view-state store, poll coordinator and CLI"""

import asyncio
import json

import httpx
import pytest
from click.testing import CliRunner

from widactl.cli import cli
from widactl.client import WidaClient
from widactl.config import ConfigStore
from widactl.errors import FetchError, SubmissionError
from widactl.models import Job, WorkerStats
from widactl.poller import PollCoordinator
from widactl.store import ViewState, ViewStore

BASE_URL = "http://wida.test"

JOBS = [
    {"id": "j1", "queue": "emails", "status": "pending", "payload": {"to": "a@b.c"},
     "max_retries": 3, "attempts": [], "timeout": 30000000000,
     "retry_policy": {"initial_interval": 1000000000, "max_interval": 10000000000, "max_attempts": 3}},
    {"id": "j2", "queue": "emails", "status": "running", "payload": {}, "attempts": [
        {"started_at": "2024-01-01T00:00:00Z", "status": "running"}]},
    {"id": "j3", "queue": "reports", "status": "failed", "payload": {}, "dependencies": ["j1"],
     "cron_expr": "0 * * * *"},
]
WORKERS = [
    {"id": "w1", "status": "running", "current_job_id": "j2", "jobs_completed": 12,
     "last_heartbeat": "2024-01-01T00:00:00Z"},
]
DLQ = [
    {"id": "d1", "queue": "emails", "payload": {}, "reason": 'bad "input"', "attempts": [],
     "failed_at": "2024-01-01T00:00:00Z"},
]


class FakeBackend:
    """Serves the four read endpoints and records enqueue requests"""

    def __init__(self):
        self.bodies = {
            "/api/jobs": {"jobs": JOBS},
            "/api/workers": {"workers": WORKERS},
            "/api/dlq": {"dlq": DLQ},
            "/api/scheduler": {"is_leader": True},
        }
        self.failing = set()
        self.enqueued = []
        self.enqueue_status = 201
        self.calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if request.method == "POST" and path == "/api/jobs/enqueue":
            if self.enqueue_status >= 400:
                return httpx.Response(self.enqueue_status, text="store unavailable")
            job = json.loads(request.content)
            self.enqueued.append(job)
            self.bodies["/api/jobs"] = {"jobs": self.bodies["/api/jobs"]["jobs"] + [job]}
            return httpx.Response(self.enqueue_status, json=job)
        if path in self.failing:
            return httpx.Response(500, text="internal error")
        if path in self.bodies:
            return httpx.Response(200, json=self.bodies[path])
        return httpx.Response(404)

    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return WidaClient(BASE_URL, transport=backend.transport())


class ScriptedClient:
    """Client whose fetches can be held open or made to fail"""

    def __init__(self):
        self.gates = {}
        self.errors = {}
        self.calls = {"jobs": 0, "workers": 0, "dlq": 0, "is_leader": 0}
        self.values = {
            "jobs": (Job.from_dict(JOBS[0]),),
            "workers": (WorkerStats.from_dict(WORKERS[0]),),
            "dlq": (),
            "is_leader": True,
        }

    async def _fetch(self, resource):
        self.calls[resource] += 1
        gate = self.gates.get(resource)
        if gate is not None:
            await gate.wait()
        if resource in self.errors:
            raise self.errors[resource]
        return self.values[resource]

    async def list_jobs(self):
        return await self._fetch("jobs")

    async def list_workers(self):
        return await self._fetch("workers")

    async def list_dlq(self):
        return await self._fetch("dlq")

    async def scheduler_status(self):
        return await self._fetch("is_leader")


# --- fetchers -------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetchers_decode_collections(client):
    jobs = await client.list_jobs()
    workers = await client.list_workers()
    dlq = await client.list_dlq()
    is_leader = await client.scheduler_status()
    await client.aclose()

    assert [job.id for job in jobs] == ["j1", "j2", "j3"]
    assert workers[0].current_job_id == "j2"
    assert dlq[0].reason == 'bad "input"'
    assert is_leader is True


@pytest.mark.asyncio
async def test_fetch_errors(backend, client):
    backend.failing.add("/api/workers")
    backend.bodies["/api/dlq"] = {"entries": []}
    backend.bodies["/api/scheduler"] = {"is_leader": "yes"}
    backend.bodies["/api/jobs"] = {"jobs": [{"queue": "q", "status": "pending"}]}

    for fetch in (client.list_workers, client.list_dlq, client.scheduler_status, client.list_jobs):
        with pytest.raises(FetchError):
            await fetch()
    await client.aclose()


@pytest.mark.asyncio
async def test_null_collection_is_empty(backend, client):
    backend.bodies["/api/workers"] = {"workers": None}
    assert await client.list_workers() == ()
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_fetch_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with WidaClient(BASE_URL, transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(FetchError) as exc:
            await client.list_jobs()
    assert exc.value.resource == "jobs"


@pytest.mark.asyncio
async def test_enqueue_rejected_raises_submission_error(backend, client):
    backend.enqueue_status = 503
    with pytest.raises(SubmissionError):
        await client.enqueue({"id": "x", "queue": "q"})
    await client.aclose()


# --- store ----------------------------------------------------------------

def test_store_replaces_one_resource_wholesale():
    store = ViewStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    before = store.snapshot()

    after = store.replace("workers", [WorkerStats.from_dict(WORKERS[0])])

    assert after.workers[0].id == "w1"
    assert after.jobs is before.jobs
    assert before.workers == ()
    assert seen == [after]
    unsubscribe()
    store.replace("is_leader", True)
    assert len(seen) == 1


def test_store_rejects_unknown_resource():
    with pytest.raises(KeyError):
        ViewStore().replace("queues", [])


def test_store_survives_failing_subscriber():
    store = ViewStore()

    def broken(state):
        raise RuntimeError("render failed")

    store.subscribe(broken)
    assert store.replace("is_leader", True).is_leader is True


# --- poll coordinator -----------------------------------------------------

@pytest.mark.asyncio
async def test_refresh_commits_all_resources(backend, client):
    store = ViewStore()
    coordinator = PollCoordinator(client, store)

    committed = await coordinator.refresh()
    await client.aclose()

    assert committed == {"jobs": True, "workers": True, "dlq": True, "is_leader": True}
    state = store.snapshot()
    assert len(state.jobs) == 3
    assert state.is_leader is True


@pytest.mark.asyncio
async def test_failed_fetch_keeps_previous_snapshot(backend, client):
    store = ViewStore()
    coordinator = PollCoordinator(client, store)
    await coordinator.refresh()
    before = store.snapshot()

    backend.failing.add("/api/workers")
    backend.bodies["/api/jobs"] = {"jobs": JOBS[:1]}
    committed = await coordinator.refresh()
    await client.aclose()

    after = store.snapshot()
    assert committed["workers"] is False
    assert committed["jobs"] is True
    assert after.workers is before.workers
    assert after.workers == before.workers
    assert [job.id for job in after.jobs] == ["j1"]


@pytest.mark.asyncio
async def test_unexpected_error_is_contained():
    scripted = ScriptedClient()
    scripted.errors["dlq"] = RuntimeError("bug")
    store = ViewStore()

    committed = await PollCoordinator(scripted, store).refresh()

    assert committed["dlq"] is False
    assert committed["jobs"] is True


@pytest.mark.asyncio
async def test_timer_polls_repeatedly_until_stopped():
    scripted = ScriptedClient()
    store = ViewStore()
    coordinator = PollCoordinator(scripted, store, interval=0.01)

    coordinator.start()
    assert scripted.calls["jobs"] == 0
    await asyncio.sleep(0.05)
    coordinator.stop()
    await coordinator.drain()
    calls = scripted.calls["jobs"]
    await asyncio.sleep(0.03)

    assert calls >= 2
    assert scripted.calls["jobs"] == calls
    assert store.snapshot().jobs[0].id == "j1"


@pytest.mark.asyncio
async def test_hung_fetch_only_stalls_its_resource():
    scripted = ScriptedClient()
    scripted.gates["jobs"] = asyncio.Event()
    store = ViewStore()
    coordinator = PollCoordinator(scripted, store, interval=0.01)

    coordinator.start()
    await asyncio.sleep(0.05)

    # Ticks skip the busy resource and keep polling the others
    assert scripted.calls["jobs"] == 1
    assert scripted.calls["workers"] >= 2
    assert "jobs" in coordinator.busy_resources()
    assert store.snapshot().workers[0].id == "w1"
    assert store.snapshot().jobs == ()

    fresh = (WorkerStats.from_dict(dict(WORKERS[0], id="w2")),)
    scripted.values["workers"] = fresh
    await asyncio.sleep(0.03)
    assert store.snapshot().workers == fresh
    assert scripted.calls["jobs"] == 1

    scripted.gates["jobs"].set()
    await asyncio.sleep(0.03)
    coordinator.stop()
    await coordinator.drain()
    assert store.snapshot().jobs[0].id == "j1"
    assert not coordinator.is_polling


@pytest.mark.asyncio
async def test_results_landing_after_stop_are_discarded():
    scripted = ScriptedClient()
    gate = asyncio.Event()
    for resource in ("jobs", "workers", "dlq", "is_leader"):
        scripted.gates[resource] = gate
    store = ViewStore()
    coordinator = PollCoordinator(scripted, store, interval=10)

    coordinator.start()
    await asyncio.sleep(0.01)
    assert coordinator.is_polling
    coordinator.stop()
    gate.set()
    await coordinator.drain()

    assert store.snapshot() == ViewState()


@pytest.mark.asyncio
async def test_restart_does_not_revive_results_from_before_stop():
    scripted = ScriptedClient()
    gate = asyncio.Event()
    scripted.gates["jobs"] = gate
    store = ViewStore()
    coordinator = PollCoordinator(scripted, store, interval=10)

    coordinator.start()
    await asyncio.sleep(0.01)
    coordinator.stop()
    coordinator.start()
    await asyncio.sleep(0.01)
    assert scripted.calls["jobs"] == 1

    gate.set()
    await asyncio.sleep(0.01)
    coordinator.stop()
    await coordinator.drain()

    assert store.snapshot().jobs == ()
    assert store.snapshot().workers[0].id == "w1"


@pytest.mark.asyncio
async def test_superseded_result_does_not_overwrite_newer_one():
    scripted = ScriptedClient()
    gate = asyncio.Event()
    scripted.gates["jobs"] = gate
    store = ViewStore()
    coordinator = PollCoordinator(scripted, store)

    old_cycle = asyncio.ensure_future(coordinator.refresh())
    while scripted.calls["jobs"] == 0:
        await asyncio.sleep(0)
    newer = (Job.from_dict(JOBS[1]),)
    scripted.values["jobs"] = newer
    scripted.gates.pop("jobs")
    await coordinator.refresh()
    assert store.snapshot().jobs == newer

    # The first request completes last, carrying an older ticket
    scripted.values["jobs"] = (Job.from_dict(JOBS[2]),)
    gate.set()
    committed = await old_cycle

    assert committed["jobs"] is False
    assert store.snapshot().jobs == newer


@pytest.mark.asyncio
async def test_drain_cancels_stragglers_after_timeout():
    scripted = ScriptedClient()
    scripted.gates["jobs"] = asyncio.Event()
    coordinator = PollCoordinator(scripted, ViewStore(), interval=10)

    coordinator.start()
    await asyncio.sleep(0.01)
    coordinator.stop()
    await coordinator.drain(timeout=0.01)

    assert not coordinator.is_polling


# --- CLI ------------------------------------------------------------------

def invoke(backend, tmp_path, args):
    runner = CliRunner()
    obj = {
        "transport": backend.transport(),
        "config_store": ConfigStore(str(tmp_path / "widactl.db")),
    }
    return runner.invoke(cli, ["--url", BASE_URL, "--quiet"] + args, obj=obj)


def test_cli_status(backend, tmp_path):
    result = invoke(backend, tmp_path, ["status"])

    assert result.exit_code == 0, result.output
    assert "Total Jobs:        3" in result.output
    assert "Active Workers:    1 (0 alive)" in result.output
    assert "Scheduler Status:  Leader" in result.output
    assert "Dead Letter Queue: 1" in result.output
    assert any(line.split() == ["emails", "1"] for line in result.output.splitlines())


def test_cli_scheduler_and_workers(backend, tmp_path):
    result = invoke(backend, tmp_path, ["scheduler"])
    assert "Leader Election: Master Node" in result.output
    assert "j3 <- j1" in result.output
    assert "j3: 0 * * * *" in result.output

    result = invoke(backend, tmp_path, ["workers"])
    assert "w1: offline" in result.output


def test_cli_jobs_list_and_show(backend, tmp_path):
    result = invoke(backend, tmp_path, ["jobs", "list", "--status", "pending"])
    assert "j1: queue emails [pending]" in result.output
    assert "j2" not in result.output

    result = invoke(backend, tmp_path, ["jobs", "show", "j1"])
    assert result.exit_code == 0
    assert '"to": "a@b.c"' in result.output
    assert "Timeout:     30s" in result.output

    result = invoke(backend, tmp_path, ["jobs", "show", "missing"])
    assert result.exit_code == 1


def test_cli_dlq_export(backend, tmp_path):
    output = tmp_path / "dlq.csv"
    result = invoke(backend, tmp_path, ["dlq", "export", "--output", str(output)])

    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8") == (
        'ID,Queue,Failed At,Reason\nd1,emails,2024-01-01T00:00:00.000Z,"bad ""input"""'
    )


def test_cli_enqueue_refreshes_and_lists_jobs(backend, tmp_path):
    result = invoke(backend, tmp_path, [
        "enqueue", "--id", "new-job", "--queue", "emails", "--payload", '{"a":1}',
        "--timeout", "5000", "--dependencies", "j1, j2",
    ])

    assert result.exit_code == 0, result.output
    assert backend.enqueued[0]["timeout"] == 5_000_000_000
    assert backend.enqueued[0]["dependencies"] == ["j1", "j2"]
    assert ("GET", "/api/jobs") in backend.calls
    assert "new-job: queue emails [pending]" in result.output


def test_cli_enqueue_invalid_payload_sends_nothing(backend, tmp_path):
    result = invoke(backend, tmp_path, ["enqueue", "--payload", "{invalid"])

    assert result.exit_code == 1
    assert "Invalid JSON in payload" in result.output
    assert backend.calls == []


def test_cli_enqueue_rejected(backend, tmp_path):
    backend.enqueue_status = 500
    result = invoke(backend, tmp_path, ["enqueue", "--payload", "{}"])

    assert result.exit_code == 1
    assert "server returned 500" in result.output


def test_cli_config_set_and_show(backend, tmp_path, monkeypatch):
    monkeypatch.delenv("WIDA_URL", raising=False)
    runner = CliRunner()
    obj = {"config_store": ConfigStore(str(tmp_path / "widactl.db"))}

    result = runner.invoke(cli, ["config", "set", "poll-interval", "5"], obj=obj)
    assert result.exit_code == 0
    result = runner.invoke(cli, ["config", "show"], obj=obj)
    assert "poll-interval: 5" in result.output
    assert "request-timeout: none" in result.output

    result = runner.invoke(cli, ["config", "set", "theme", "dark"], obj=obj)
    assert result.exit_code == 1
