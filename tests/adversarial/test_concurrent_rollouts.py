"""Adversarial tests — concurrent and duplicate rollout requests.

A service must never have two rollouts in flight, duplicate requests must
collapse into one record, and unrelated services must not block each other.
"""

from __future__ import annotations

import threading

import pytest

from rollwright.core.controller import RolloutController, RolloutInProgressError
from rollwright.core.history import RecordNotFoundError
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOptions, RolloutOutcome
from rollwright.platform import ServiceNotFoundError
from rollwright.platform.memory import InMemoryPlatform

_FAST = RolloutOptions(health_timeout=5, poll_interval=0.01, initial_backoff=0.01)


class GatedPlatform(InMemoryPlatform):
    """Holds the first health poll of each service until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered: dict[str, threading.Event] = {}
        self.release = threading.Event()

    def gate(self, service_id: str) -> threading.Event:
        self.entered[service_id] = threading.Event()
        return self.entered[service_id]

    def poll_health(self, service_id):
        entered = self.entered.get(service_id)
        if entered is not None:
            entered.set()
            self.release.wait(5)
        return super().poll_health(service_id)


@pytest.fixture
def gated(v1) -> GatedPlatform:
    platform = GatedPlatform()
    platform.register_service("svc1", v1)
    platform.register_service("svc2", v1)
    return platform


@pytest.fixture
def live_controller(gated, history, settings):
    """Controller on the wall clock so rollouts really overlap."""
    with RolloutController(gated, history, settings=settings) as ctl:
        yield ctl


class TestDuplicateRequests:
    def test_duplicate_start_returns_in_flight_record(self, live_controller, gated, history, v2):
        entered = gated.gate("svc1")
        results = []
        worker = threading.Thread(
            target=lambda: results.append(live_controller.start("svc1", v2, _FAST))
        )
        worker.start()
        assert entered.wait(5)

        duplicate = live_controller.start("svc1", v2, _FAST)
        assert duplicate.outcome == RolloutOutcome.PENDING
        assert live_controller.get(duplicate.id).outcome == RolloutOutcome.PENDING

        gated.release.set()
        worker.join(5)

        assert results[0].id == duplicate.id
        assert results[0].outcome == RolloutOutcome.SUCCEEDED
        assert len(gated.update_calls) == 1
        assert [r.id for r in history.list_by_service("svc1")] == [duplicate.id]

    def test_duplicate_submit_returns_same_future(self, live_controller, gated, history, v2):
        entered = gated.gate("svc1")
        first = live_controller.submit("svc1", v2, _FAST)
        assert entered.wait(5)
        second = live_controller.submit("svc1", v2, _FAST)
        assert second is first

        gated.release.set()
        record = first.result(timeout=5)
        assert record.outcome == RolloutOutcome.SUCCEEDED
        assert len(list(history.list_by_service("svc1"))) == 1

    def test_many_racing_duplicates_produce_one_record(self, live_controller, gated, history, v2):
        entered = gated.gate("svc1")
        barrier = threading.Barrier(8)
        ids: list[str] = []
        lock = threading.Lock()

        def request():
            barrier.wait(5)
            future = live_controller.submit("svc1", v2, _FAST)
            with lock:
                ids.append(id(future))

        threads = [threading.Thread(target=request) for _ in range(8)]
        for t in threads:
            t.start()
        assert entered.wait(5)
        for t in threads:
            t.join(5)
        gated.release.set()

        assert len(set(ids)) == 1
        live_controller.shutdown()
        assert len(list(history.list_by_service("svc1"))) == 1
        assert len(gated.update_calls) == 1


class TestConflictingRequests:
    def test_different_target_while_in_flight_is_refused(
        self, live_controller, gated, history, v2
    ):
        entered = gated.gate("svc1")
        future = live_controller.submit("svc1", v2, _FAST)
        assert entered.wait(5)

        v3 = ArtifactRef(registry="r", repository="app", tag="v3")
        with pytest.raises(RolloutInProgressError, match="already rolling out"):
            live_controller.start("svc1", v3, _FAST)

        gated.release.set()
        assert future.result(timeout=5).target == v2
        # The slot is free again once the first rollout is recorded.
        assert live_controller.start("svc1", v3, _FAST).outcome == RolloutOutcome.SUCCEEDED
        assert [r.target for r in history.list_by_service("svc1")] == [v3, v2]

    def test_other_services_are_not_blocked(self, live_controller, gated, v2):
        gated.gate("svc1")
        blocked = live_controller.submit("svc1", v2, _FAST)
        assert gated.entered["svc1"].wait(5)

        record = live_controller.start("svc2", v2, _FAST)
        assert record.outcome == RolloutOutcome.SUCCEEDED
        assert not blocked.done()

        gated.release.set()
        assert blocked.result(timeout=5).outcome == RolloutOutcome.SUCCEEDED


class TestLiveCancel:
    def test_cancel_wakes_a_waiting_rollout(self, live_controller, gated, v1, v2):
        gated.never_converge("svc1", v2)
        entered = gated.gate("svc1")
        future = live_controller.submit(
            "svc1", v2, RolloutOptions(health_timeout=60, poll_interval=30)
        )
        assert entered.wait(5)
        gated.release.set()

        assert live_controller.cancel("svc1") is True
        record = future.result(timeout=5)
        assert record.outcome == RolloutOutcome.ROLLED_BACK
        assert gated.update_calls == [("svc1", v2), ("svc1", v1)]


class TestDuplicateOfRefusedRollout:
    def test_duplicate_during_state_read_of_unknown_service(self, history, settings, v2):
        entered = threading.Event()
        release = threading.Event()

        class VanishingPlatform(InMemoryPlatform):
            def get_service_state(self, service_id):
                entered.set()
                release.wait(5)
                return super().get_service_state(service_id)

        platform = VanishingPlatform()
        errors = []

        def first_call():
            try:
                ctl.start("ghost", v2, _FAST)
            except ServiceNotFoundError as exc:
                errors.append(exc)

        with RolloutController(platform, history, settings=settings) as ctl:
            worker = threading.Thread(target=first_call)
            worker.start()
            assert entered.wait(5)

            duplicate = ctl.start("ghost", v2, _FAST)
            assert duplicate.outcome == RolloutOutcome.PENDING

            release.set()
            worker.join(5)

            assert len(errors) == 1
            assert ctl.active("ghost") is None
            with pytest.raises(RecordNotFoundError):
                ctl.get(duplicate.id)
