"""Pytest fixtures for scheduling tests."""

import json

import httpx
import pytest

from jobspine.core.models.jobs import JobInstance
from jobspine.core.repositories.jobs import JobDefinitionRepository, JobInstanceRepository
from jobspine.core.repository import release_connection
from jobspine.core.schema_loader import create_test_db

# 2023-11-14T22:13:20Z
T0 = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> int:
        self.now += int(seconds * 1000)
        return self.now


class StatusServer:
    """Scripted remote status service for ``httpx.MockTransport``.

    ``responses`` maps a session id to either an ``httpx.Response`` or an
    exception instance to raise. Unknown sessions answer 404.
    """

    def __init__(self):
        self.responses = {}
        self.requests = []

    def reply(self, session_id, body=None, *, status=200, raw=None):
        content = raw if raw is not None else json.dumps(body)
        self.responses[session_id] = httpx.Response(status, content=content)

    def fail(self, session_id, error):
        self.responses[session_id] = error

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        session_id = request.url.path.rsplit("/", 1)[-1]
        outcome = self.responses.get(session_id)
        if outcome is None:
            return httpx.Response(404)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_conn():
    """Create an in-memory SQLite database with the jobs schema."""
    conn = create_test_db()
    yield conn
    conn.close()
    release_connection(conn)


@pytest.fixture
def definitions(db_conn, clock):
    return JobDefinitionRepository(db_conn, clock=clock)


@pytest.fixture
def instances(db_conn, clock):
    return JobInstanceRepository(db_conn, clock=clock)


@pytest.fixture
def backend(clock):
    """A ThreadTriggerBackend that is never started (fire_due drives it)."""
    from jobspine.core.scheduling import ThreadTriggerBackend

    return ThreadTriggerBackend(clock=clock)


@pytest.fixture
def status_server():
    return StatusServer()


@pytest.fixture
def status_client(status_server):
    from jobspine.core.scheduling import StatusClient

    client = StatusClient(
        "http://status.test/batches",
        timeout=1.0,
        transport=httpx.MockTransport(status_server),
    )
    yield client
    client.close()


@pytest.fixture
def engine(backend, definitions, instances, clock):
    from jobspine.core.scheduling import SchedulerEngine

    return SchedulerEngine(backend, definitions, instances, clock=clock)


@pytest.fixture
def reconciler(instances, status_client):
    from jobspine.core.scheduling import InstanceReconciler

    return InstanceReconciler(instances, status_client)


@pytest.fixture
def make_instance(instances, clock):
    """Insert an instance; timestamps increase so newest-first order is stable."""
    counter = {"n": 0}

    def _make(group="BA", job_name="accuracy", session_id="1", state="starting", app_id=None):
        counter["n"] += 1
        return instances.create(
            JobInstance(
                group_name=group,
                job_name=job_name,
                session_id=session_id,
                state=state,
                app_id=app_id,
                timestamp=clock() + counter["n"],
            )
        )

    return _make
