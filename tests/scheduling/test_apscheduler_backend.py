"""Tests for APSchedulerTriggerBackend."""

from __future__ import annotations

import sys
import threading
import time

import pytest

from jobspine.core.models.jobs import JobKey, TriggerState
from jobspine.core.scheduling.protocol import TriggerBackend
from jobspine.core.timestamps import now_ms, to_datetime

apscheduler = pytest.importorskip("apscheduler")

KEY = JobKey("BA", "accuracy")


def _future_start(hours: int = 1) -> int:
    """A whole-second start time well in the future."""
    return (now_ms() // 1000 + hours * 3600) * 1000


@pytest.fixture
def aps_backend():
    from jobspine.core.scheduling.apscheduler_backend import APSchedulerTriggerBackend

    backend = APSchedulerTriggerBackend()
    yield backend
    backend.shutdown()


class TestAPSchedulerBackendImportGuard:
    """Test that import fails gracefully when apscheduler is not installed."""

    def test_import_error_without_apscheduler(self, monkeypatch):
        """Raises ImportError with install hint when apscheduler missing."""
        import builtins

        from jobspine.core.scheduling.apscheduler_backend import _require_apscheduler

        monkeypatch.delitem(sys.modules, "apscheduler.schedulers.background", raising=False)
        real_import = builtins.__import__

        def mock_import(name, *args, **kwargs):
            if name.startswith("apscheduler"):
                raise ImportError("No module named 'apscheduler'")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", mock_import)

        with pytest.raises(ImportError, match="jobspine\\[apscheduler\\]"):
            _require_apscheduler()


class TestAPSchedulerBackendStopped:
    """Registry behaviour before the scheduler starts (jobs are pending)."""

    def test_implements_protocol(self, aps_backend):
        assert isinstance(aps_backend, TriggerBackend)
        assert aps_backend.name == "apscheduler"

    def test_register_pending(self, aps_backend):
        start = _future_start()
        info = aps_backend.register(KEY, 300, start)
        assert info.key == KEY
        assert info.interval_seconds == 300
        assert info.start_at == start
        assert info.next_fire_time == start
        assert info.previous_fire_time is None
        assert info.state is TriggerState.NORMAL

    def test_register_twice_keeps_one_job(self, aps_backend):
        aps_backend.register(KEY, 300, _future_start())
        aps_backend.register(KEY, 600, _future_start(2))
        assert aps_backend.list_keys("BA") == [KEY]
        assert aps_backend.get_trigger(KEY).interval_seconds == 600

    def test_unregister_unknown(self, aps_backend):
        assert aps_backend.unregister(KEY) is False

    def test_health_not_running(self, aps_backend):
        health = aps_backend.health()
        assert health["healthy"] is False
        assert health["backend"] == "apscheduler"


class TestAPSchedulerBackendRunning:
    """Registry behaviour on a started (paused) scheduler."""

    @pytest.fixture
    def running(self, aps_backend):
        aps_backend.start(paused=True)
        return aps_backend

    def test_replace_while_running(self, running):
        first = _future_start()
        second = _future_start(2)
        running.register(KEY, 300, first)
        running.register(KEY, 300, second)
        assert running.get_trigger(KEY).next_fire_time == second
        assert running.list_keys("BA") == [KEY]

    def test_groups_and_keys(self, running):
        running.register(JobKey("FM", "drift"), 60, _future_start())
        running.register(JobKey("BA", "b"), 60, _future_start())
        running.register(JobKey("BA", "a"), 60, _future_start())
        assert running.list_groups() == ["BA", "FM"]
        assert running.list_keys("BA") == [JobKey("BA", "a"), JobKey("BA", "b")]

    def test_keys_with_dots_round_trip(self, running):
        key = JobKey("team.ba", "job.v2")
        running.register(key, 60, _future_start())
        assert running.list_keys("team.ba") == [key]

    def test_pause_and_resume(self, running):
        start = _future_start()
        running.register(KEY, 60, start)
        assert running.pause(KEY) is True
        paused = running.get_trigger(KEY)
        assert paused.state is TriggerState.PAUSED
        assert paused.next_fire_time == start

        assert running.resume(KEY) is True
        assert running.get_trigger(KEY).state is TriggerState.NORMAL

    def test_pause_unknown(self, running):
        assert running.pause(KEY) is False
        assert running.resume(KEY) is False

    def test_unregister(self, running):
        running.register(KEY, 60, _future_start())
        assert running.unregister(KEY) is True
        assert running.get_trigger(KEY) is None
        assert running.list_groups() == []

    def test_health_running(self, running):
        running.register(KEY, 60, _future_start())
        health = running.health()
        assert health["healthy"] is True
        assert health["triggers"] == 1


class TestAPSchedulerBackendFiring:
    """Fire callback dispatch and previous fire time tracking."""

    def test_fire_invokes_callback(self, aps_backend):
        fired = []
        aps_backend.set_fire_callback(fired.append)
        aps_backend._fire("BA", "accuracy")
        assert fired == [KEY]

    def test_fire_contains_callback_error(self, aps_backend):
        def boom(key):
            raise RuntimeError("executor down")

        aps_backend.set_fire_callback(boom)
        aps_backend._fire("BA", "accuracy")

    def test_submission_event_records_previous_fire_time(self, aps_backend):
        from apscheduler.events import EVENT_JOB_SUBMITTED, JobSubmissionEvent

        start = _future_start()
        aps_backend.register(KEY, 60, start)
        event = JobSubmissionEvent(
            EVENT_JOB_SUBMITTED, '["BA", "accuracy"]', "default", [to_datetime(start)]
        )
        aps_backend._on_submitted(event)
        assert aps_backend.get_trigger(KEY).previous_fire_time == start

    def test_foreign_job_events_ignored(self, aps_backend):
        from apscheduler.events import EVENT_JOB_SUBMITTED, JobSubmissionEvent

        event = JobSubmissionEvent(EVENT_JOB_SUBMITTED, "not-json", "default", [])
        aps_backend._on_submitted(event)

    @pytest.mark.slow
    def test_real_firing(self, aps_backend):
        fired = threading.Event()
        aps_backend.set_fire_callback(lambda key: fired.set())
        aps_backend.register(KEY, 1, now_ms())
        aps_backend.start()
        assert fired.wait(timeout=5.0)

        # The submission listener runs on the scheduler thread
        deadline = time.monotonic() + 2.0
        while aps_backend.get_trigger(KEY).previous_fire_time is None:
            assert time.monotonic() < deadline
            time.sleep(0.05)
