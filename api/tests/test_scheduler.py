"""Tests for expiry timers and the periodic sweep loop"""

import threading
import time

import pytest

from ephemail.scheduler import EvictionScheduler


@pytest.fixture
def scheduler():
    sched = EvictionScheduler(interval_seconds=0.05, initial_delay_seconds=0)
    yield sched
    sched.stop(timeout=2)


class TestTimers:
    """Test one-shot expiry timers"""

    def test_timer_fires_with_key(self, scheduler):
        fired = threading.Event()
        keys = []

        def callback(key):
            keys.append(key)
            fired.set()

        scheduler.schedule("entity-1", 0.01, callback)

        assert fired.wait(2)
        assert keys == ["entity-1"]

    def test_fired_timer_is_forgotten(self, scheduler):
        fired = threading.Event()
        scheduler.schedule("entity-1", 0.01, lambda key: fired.set())

        assert fired.wait(2)
        deadline = time.monotonic() + 2
        while scheduler.pending_timers() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert scheduler.pending_timers() == 0

    def test_cancel(self, scheduler):
        calls = []
        scheduler.schedule("entity-1", 0.2, calls.append)

        assert scheduler.cancel("entity-1") is True
        assert scheduler.cancel("entity-1") is False
        time.sleep(0.3)
        assert calls == []

    def test_rearm_replaces_timer(self, scheduler):
        calls = []
        fired = threading.Event()

        def second(key):
            calls.append(("second", key))
            fired.set()

        scheduler.schedule("entity-1", 0.2, lambda key: calls.append(("first", key)))
        scheduler.schedule("entity-1", 0.01, second)

        assert scheduler.pending_timers() == 1
        assert fired.wait(2)
        time.sleep(0.3)
        assert calls == [("second", "entity-1")]

    def test_negative_delay_fires_immediately(self, scheduler):
        fired = threading.Event()
        scheduler.schedule("entity-1", -5, lambda key: fired.set())
        assert fired.wait(2)

    def test_callback_error_is_contained(self, scheduler):
        fired = threading.Event()

        def broken(key):
            fired.set()
            raise RuntimeError("boom")

        scheduler.schedule("entity-1", 0.01, broken)
        assert fired.wait(2)

    def test_stop_cancels_pending_timers(self, scheduler):
        calls = []
        scheduler.schedule("entity-1", 0.2, calls.append)
        scheduler.schedule("entity-2", 0.2, calls.append)

        scheduler.stop()

        assert scheduler.pending_timers() == 0
        time.sleep(0.3)
        assert calls == []

    def test_timers_share_one_thread(self, scheduler):
        before = threading.active_count()

        for i in range(300):
            scheduler.schedule(f"entity-{i}", 60, lambda key: None)

        assert scheduler.pending_timers() == 300
        assert threading.active_count() <= before + 1

    def test_timers_fire_in_deadline_order(self, scheduler):
        order = []
        done = threading.Event()

        def record(key):
            order.append(key)
            if len(order) == 3:
                done.set()

        scheduler.schedule("late", 0.15, record)
        scheduler.schedule("early", 0.01, record)
        scheduler.schedule("middle", 0.08, record)

        assert done.wait(2)
        assert order == ["early", "middle", "late"]

    def test_cancelled_entries_are_compacted(self, scheduler):
        for i in range(500):
            scheduler.schedule(f"entity-{i}", 60, lambda key: None)
        for i in range(500):
            scheduler.cancel(f"entity-{i}")

        assert scheduler.pending_timers() == 0
        assert len(scheduler._heap) <= 64

    def test_schedule_after_stop(self, scheduler):
        scheduler.schedule("entity-1", 60, lambda key: None)
        scheduler.stop(timeout=2)

        fired = threading.Event()
        scheduler.schedule("entity-2", 0.01, lambda key: fired.set())

        assert fired.wait(2)


class TestSweep:
    """Test registered sweep functions"""

    def test_run_sweep_collects_counts(self, scheduler):
        scheduler.register_sweep("expired emails", lambda: 3)
        scheduler.register_sweep("old usage counters", lambda: 0)

        assert scheduler.run_sweep() == {"expired emails": 3, "old usage counters": 0}

    def test_failing_sweep_does_not_stop_others(self, scheduler):
        def broken():
            raise RuntimeError("boom")

        scheduler.register_sweep("broken", broken)
        scheduler.register_sweep("inactive aliases", lambda: 2)

        results = scheduler.run_sweep()

        assert "broken" not in results
        assert results["inactive aliases"] == 2

    def test_loop_runs_repeatedly(self, scheduler):
        runs = []
        done = threading.Event()

        def sweep():
            runs.append(1)
            if len(runs) >= 3:
                done.set()
            return 0

        scheduler.register_sweep("counting", sweep)
        scheduler.start()

        assert scheduler.is_running
        assert done.wait(2)

        scheduler.stop(timeout=2)
        assert not scheduler.is_running

    def test_stop_during_initial_delay(self):
        runs = []
        sched = EvictionScheduler(interval_seconds=60, initial_delay_seconds=60)
        sched.register_sweep("counting", lambda: runs.append(1) or 0)

        sched.start()
        sched.stop(timeout=2)

        assert not sched.is_running
        assert runs == []


class TestStoreTimers:
    """Test the entity store arms and clears expiry timers"""

    def test_create_arms_timer(self, service, store):
        entity = store.create("owner-1", "10min")
        assert service.scheduler.pending_timers() == 1

        assert store.delete(entity.id, "owner-1") is True
        assert service.scheduler.pending_timers() == 0

    def test_timer_callback_removes_entity(self, store):
        entity = store.create("owner-1", "10min")

        assert store.expire(entity.id) is True
        assert store.expire(entity.id) is False
        assert store.entity_count() == 0
