"""Tests for SchedulerEngine."""

import threading

import pytest

from jobspine.core.errors import SchedulingBackendError
from jobspine.core.models.jobs import NO_FIRE_TIME, JobKey, TriggerState
from jobspine.core.scheduling import JobRequest, SchedulerEngine

KEY = JobKey("BA", "accuracy")


def _request(clock, start_offset_ms=0, period="60", **overrides):
    fields = {
        "source_pattern": "/in/*",
        "target_pattern": "/out",
        "data_start_timestamp": None,
        "job_start_time": str(clock.now + start_offset_ms),
        "period_time": period,
    }
    fields.update(overrides)
    return JobRequest(**fields)


class FailingRegisterBackend:
    """Wraps a backend and fails every register call."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def register(self, key, interval_seconds, start_at):
        raise SchedulingBackendError("backend unavailable")


class FailingUnregisterBackend:
    """Wraps a backend and fails every unregister call."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def unregister(self, key):
        raise SchedulingBackendError("backend unavailable")


class TestAddJob:
    """Test add_job()."""

    def test_creates_trigger_and_definition(self, engine, backend, definitions, clock):
        assert engine.add_job("BA", "accuracy", "measure-1", _request(clock, 5_000))

        trigger = backend.get_trigger(KEY)
        assert trigger.interval_seconds == 60
        assert trigger.next_fire_time == clock.now + 5_000

        definition = definitions.get(KEY)
        assert definition.measure == "measure-1"
        assert definition.source_pattern == "/in/*"
        assert definition.job_start_time == str(clock.now + 5_000)
        assert definition.period_time == "60"

    def test_past_start_is_aligned(self, engine, backend, clock):
        start = clock.now - 305_000
        request = _request(clock, job_start_time=str(start))
        assert engine.add_job("BA", "accuracy", "m", request)
        assert backend.get_trigger(KEY).next_fire_time == start + 360_000

    def test_idempotent(self, engine, backend, definitions, clock):
        request = _request(clock, 10_000)
        assert engine.add_job("BA", "accuracy", "m", request)
        first = definitions.get(KEY)
        assert engine.add_job("BA", "accuracy", "m", request)

        assert backend.list_keys("BA") == [KEY]
        assert len(definitions.list_all()) == 1
        assert definitions.get(KEY).created_at == first.created_at
        assert [j.to_dict() for j in engine.list_jobs()] == [
            engine.get_job("BA", "accuracy").to_dict()
        ]

    def test_update_replaces_metadata_and_trigger(self, engine, backend, definitions, clock):
        engine.add_job("BA", "accuracy", "m1", _request(clock, 10_000))
        clock.advance(5)
        engine.add_job("BA", "accuracy", "m2", _request(clock, 0, period="120"))

        assert backend.get_trigger(KEY).interval_seconds == 120
        definition = definitions.get(KEY)
        assert definition.measure == "m2"
        assert definition.period_time == "120"
        assert definition.updated_at == clock.now
        assert definition.created_at == clock.now - 5_000

    @pytest.mark.parametrize(
        "overrides",
        [
            {"period_time": "0"},
            {"period_time": "-60"},
            {"period_time": "sixty"},
            {"job_start_time": "tomorrow"},
            {"job_start_time": ""},
        ],
    )
    def test_invalid_request_mutates_nothing(self, engine, backend, definitions, clock, overrides):
        assert engine.add_job("BA", "accuracy", "m", _request(clock, **overrides)) is False
        assert backend.get_trigger(KEY) is None
        assert definitions.get(KEY) is None

    def test_invalid_update_keeps_previous_job(self, engine, backend, definitions, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock, 10_000))
        assert engine.add_job("BA", "accuracy", "m2", _request(clock, period="0")) is False
        assert backend.get_trigger(KEY).interval_seconds == 60
        assert definitions.get(KEY).measure == "m"

    def test_backend_failure_returns_false(self, backend, definitions, instances, clock):
        engine = SchedulerEngine(FailingRegisterBackend(backend), definitions, instances, clock=clock)
        assert engine.add_job("BA", "accuracy", "m", _request(clock)) is False
        assert definitions.get(KEY) is None

    def test_definition_failure_rolls_back_new_trigger(self, engine, backend, definitions, clock, monkeypatch):
        def broken_create(definition):
            raise RuntimeError("disk full")

        monkeypatch.setattr(definitions, "create", broken_create)
        assert engine.add_job("BA", "accuracy", "m", _request(clock)) is False
        assert backend.get_trigger(KEY) is None

    def test_definition_failure_restores_previous_trigger(self, engine, backend, definitions, clock, monkeypatch):
        engine.add_job("BA", "accuracy", "m", _request(clock, 10_000))

        def broken_update(definition):
            raise RuntimeError("disk full")

        monkeypatch.setattr(definitions, "update", broken_update)
        assert engine.add_job("BA", "accuracy", "m2", _request(clock, period="300")) is False

        trigger = backend.get_trigger(KEY)
        assert trigger.interval_seconds == 60
        assert trigger.next_fire_time == clock.now + 10_000
        assert definitions.get(KEY).measure == "m"


class TestListJobs:
    """Test list_jobs() / get_job()."""

    def test_empty(self, engine):
        assert engine.list_jobs() == []

    def test_wire_shape(self, engine, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock, 5_000))
        [summary] = engine.list_jobs()
        assert summary.to_dict() == {
            "jobName": "accuracy",
            "groupName": "BA",
            "nextFireTime": clock.now + 5_000,
            "previousFireTime": NO_FIRE_TIME,
            "triggerState": "NORMAL",
            "measure": "m",
            "sourcePattern": "/in/*",
            "targetPattern": "/out",
            "jobStartTime": str(clock.now + 5_000),
            "periodTime": "60",
        }

    def test_data_start_timestamp_only_when_set(self, engine, clock):
        engine.add_job("BA", "a", "m", _request(clock, data_start_timestamp="2024-01-01"))
        engine.add_job("BA", "b", "m", _request(clock, data_start_timestamp=""))
        by_name = {s.job_name: s.to_dict() for s in engine.list_jobs()}
        assert by_name["a"]["dataStartTimestamp"] == "2024-01-01"
        assert "dataStartTimestamp" not in by_name["b"]

    def test_previous_fire_time_after_firing(self, engine, backend, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        fired_at = clock.now
        backend.fire_due()
        summary = engine.get_job("BA", "accuracy")
        assert summary.previous_fire_time == fired_at
        assert summary.next_fire_time == fired_at + 60_000

    def test_paused_job_reports_grid_time(self, engine, clock):
        start = clock.now
        engine.add_job("BA", "accuracy", "m", _request(clock))
        assert engine.pause_job("BA", "accuracy")
        clock.advance(90)
        summary = engine.get_job("BA", "accuracy")
        assert summary.trigger_state is TriggerState.PAUSED
        assert summary.next_fire_time == start + 120_000
        assert engine.resume_job("BA", "accuracy")
        assert engine.get_job("BA", "accuracy").trigger_state is TriggerState.NORMAL

    def test_skips_trigger_without_definition(self, engine, backend, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        backend.register(JobKey("BA", "orphan"), 60, clock.now)
        assert [s.job_name for s in engine.list_jobs()] == ["accuracy"]

    def test_groups_enumerated(self, engine, clock):
        engine.add_job("FM", "drift", "m", _request(clock))
        engine.add_job("BA", "accuracy", "m", _request(clock))
        assert [(s.group_name, s.job_name) for s in engine.list_jobs()] == [
            ("BA", "accuracy"),
            ("FM", "drift"),
        ]


class TestDeleteJob:
    """Test delete_job()."""

    def test_removes_trigger_definition_and_instances(self, engine, backend, definitions, instances, make_instance, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        make_instance(session_id="1")
        make_instance(session_id="2")
        make_instance(job_name="other", session_id="3")

        assert engine.delete_job("BA", "accuracy") is True

        assert backend.get_trigger(KEY) is None
        assert definitions.get(KEY) is None
        assert instances.find_by_job("BA", "accuracy") == []
        assert len(instances.find_by_job("BA", "other")) == 1
        assert engine.list_jobs() == []

    def test_delete_unknown_job(self, engine):
        assert engine.delete_job("BA", "missing") is True

    def test_backend_failure_keeps_job(self, backend, definitions, instances, make_instance, clock):
        engine = SchedulerEngine(backend, definitions, instances, clock=clock)
        engine.add_job("BA", "accuracy", "m", _request(clock))
        make_instance(session_id="1")

        failing = SchedulerEngine(FailingUnregisterBackend(backend), definitions, instances, clock=clock)
        assert failing.delete_job("BA", "accuracy") is False

        assert backend.get_trigger(KEY) is not None
        assert definitions.get(KEY) is not None
        assert len(instances.find_by_job("BA", "accuracy")) == 1

    def test_definition_failure_restores_trigger(self, engine, backend, definitions, instances, make_instance, clock, monkeypatch):
        engine.add_job("BA", "accuracy", "m", _request(clock, 10_000))
        make_instance(session_id="1")

        def broken_delete(key):
            raise RuntimeError("disk full")

        monkeypatch.setattr(definitions, "delete", broken_delete)
        assert engine.delete_job("BA", "accuracy") is False

        trigger = backend.get_trigger(KEY)
        assert trigger.interval_seconds == 60
        assert trigger.next_fire_time == clock.now + 10_000
        assert [s.job_name for s in engine.list_jobs()] == ["accuracy"]
        assert len(instances.find_by_job("BA", "accuracy")) == 1

    def test_instance_failure_rolls_back_definition_delete(self, engine, backend, definitions, instances, make_instance, clock, monkeypatch):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        make_instance(session_id="1")

        def broken_delete_by_job(group, job_name):
            raise RuntimeError("disk full")

        monkeypatch.setattr(instances, "delete_by_job", broken_delete_by_job)
        assert engine.delete_job("BA", "accuracy") is False

        assert backend.get_trigger(KEY) is not None
        assert definitions.get(KEY).measure == "m"
        assert len(instances.find_by_job("BA", "accuracy")) == 1

    def test_paused_trigger_restored_paused(self, engine, backend, definitions, clock, monkeypatch):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        engine.pause_job("BA", "accuracy")

        def broken_delete(key):
            raise RuntimeError("disk full")

        monkeypatch.setattr(definitions, "delete", broken_delete)
        assert engine.delete_job("BA", "accuracy") is False
        assert backend.get_trigger(KEY).state is TriggerState.PAUSED

    def test_pause_unknown_job(self, engine):
        assert engine.pause_job("BA", "missing") is False
        assert engine.resume_job("BA", "missing") is False


class TestLoadTriggers:
    """Test load_triggers()."""

    def test_restart_rebuilds_triggers(self, engine, definitions, instances, clock):
        from jobspine.core.scheduling import ThreadTriggerBackend

        start = clock.now
        engine.add_job("BA", "accuracy", "m", _request(clock))
        engine.add_job("FM", "drift", "m", _request(clock, period="300"))
        clock.advance(90)

        fresh = ThreadTriggerBackend(clock=clock)
        restarted = SchedulerEngine(fresh, definitions, instances, clock=clock)
        assert restarted.list_jobs() == []

        assert restarted.load_triggers() == 2
        assert [(s.group_name, s.job_name) for s in restarted.list_jobs()] == [
            ("BA", "accuracy"),
            ("FM", "drift"),
        ]
        trigger = fresh.get_trigger(KEY)
        assert trigger.interval_seconds == 60
        assert trigger.next_fire_time == start + 120_000

    def test_existing_trigger_left_alone(self, engine, backend, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        engine.pause_job("BA", "accuracy")
        assert engine.load_triggers() == 0
        assert backend.get_trigger(KEY).state is TriggerState.PAUSED

    def test_unparseable_definition_skipped(self, engine, backend, definitions, clock):
        from jobspine.core.models.jobs import JobDefinition

        definitions.create(
            JobDefinition(
                group_name="BA",
                job_name="broken",
                measure="m",
                job_start_time=str(clock.now),
                period_time="abc",
            )
        )
        engine.add_job("BA", "accuracy", "m", _request(clock))
        backend.unregister(KEY)

        assert engine.load_triggers() == 1
        assert backend.get_trigger(JobKey("BA", "broken")) is None
        assert backend.get_trigger(KEY) is not None


class TestConcurrentUpdates:
    """Rescheduling a job never leaves it without a trigger."""

    def test_job_listed_while_rescheduled(self, engine, clock):
        engine.add_job("BA", "accuracy", "m", _request(clock))
        done = threading.Event()
        failures = []

        def reschedule():
            try:
                for i in range(200):
                    period = "60" if i % 2 else "120"
                    if not engine.add_job("BA", "accuracy", "m", _request(clock, period=period)):
                        failures.append(f"add_job {i} returned False")
            finally:
                done.set()

        def watch():
            while not done.is_set():
                names = [(s.group_name, s.job_name) for s in engine.list_jobs()]
                if ("BA", "accuracy") not in names:
                    failures.append(names)

        threads = [threading.Thread(target=reschedule), threading.Thread(target=watch)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert failures == []
        assert engine.get_job("BA", "accuracy") is not None


class TestFire:
    """Test the fire hook."""

    def test_executor_receives_definition(self, backend, definitions, instances, clock):
        received = []
        engine = SchedulerEngine(backend, definitions, instances, executor=received.append, clock=clock)
        engine.add_job("BA", "accuracy", "m", _request(clock))

        backend.fire_due()

        assert [d.key for d in received] == [KEY]
        assert received[0].measure == "m"

    def test_executor_failure_is_contained(self, backend, definitions, instances, clock):
        def boom(definition):
            raise RuntimeError("cluster unreachable")

        engine = SchedulerEngine(backend, definitions, instances, executor=boom, clock=clock)
        engine.add_job("BA", "accuracy", "m", _request(clock))
        engine.fire(KEY)

    def test_fire_without_definition(self, engine):
        engine.fire(JobKey("BA", "missing"))
