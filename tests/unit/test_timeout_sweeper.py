"""Tests for TimeoutSweeper, including concurrent sweeps and decisions."""
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from floworx_approval.approval.manager import ApprovalRequestManager
from floworx_approval.approval.models import ApprovalStatus, DecisionOutcome
from floworx_approval.approval.repository import InMemoryApprovalRepository
from floworx_approval.approval.steps import StepProcessor
from floworx_approval.approval.sweeper import TimeoutSweeper
from floworx_approval.conditions.evaluator import ConditionEvaluator
from floworx_approval.workflows.definitions import Step, StepType, WorkflowDefinition
from floworx_approval.workflows.store import InMemoryWorkflowStore

T0 = datetime(2024, 1, 8, 11, 0, tzinfo=timezone.utc)
EXPIRED = T0 + timedelta(hours=25)


class FlakyManager(ApprovalRequestManager):
    """Raises for one request id to prove sweeps isolate failures."""

    broken_id: str = ""

    def force_timeout(self, request_id, now=None):
        if request_id == self.broken_id:
            raise RuntimeError("storage hiccup")
        return super().force_timeout(request_id, now)


@pytest.fixture()
def evaluator():
    ev = ConditionEvaluator(clock=lambda: T0)
    yield ev
    ev.close()


@pytest.fixture()
def repository() -> InMemoryApprovalRepository:
    return InMemoryApprovalRepository()


@pytest.fixture()
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore(
        [
            WorkflowDefinition(id="replies", name="Replies", timeout_hours=24),
            WorkflowDefinition(
                id="quick",
                name="Quick manager check",
                timeout_hours=24,
                approval_steps=[
                    Step(
                        type=StepType.MANAGER_APPROVAL,
                        parameters={"managers": ["m@example.com"]},
                        timeout_hours=1,
                    )
                ],
            ),
        ]
    )


def _manager(store, repository, evaluator, cls=ApprovalRequestManager) -> ApprovalRequestManager:
    return cls(store, repository, evaluator, StepProcessor(evaluator), clock=lambda: T0)


@pytest.fixture()
def manager(store, repository, evaluator) -> ApprovalRequestManager:
    return _manager(store, repository, evaluator)


@pytest.fixture()
def sweeper(manager, repository) -> TimeoutSweeper:
    return TimeoutSweeper(manager, repository, interval_seconds=0.01)


# ---------------------------------------------------------------------------
# sweep_once
# ---------------------------------------------------------------------------


class TestSweepOnce:
    def test_nothing_expired(self, manager, sweeper: TimeoutSweeper) -> None:
        manager.create_request("replies", {})
        assert sweeper.sweep_once(now=T0 + timedelta(hours=1)) == []

    def test_expired_request_times_out(self, manager, sweeper: TimeoutSweeper) -> None:
        request = manager.create_request("replies", {}).request
        assert sweeper.sweep_once(now=EXPIRED) == [request.request_id]
        assert manager.get_request(request.request_id).status is ApprovalStatus.TIMEOUT

    def test_second_pass_is_noop(self, manager, sweeper: TimeoutSweeper) -> None:
        request = manager.create_request("replies", {}).request
        sweeper.sweep_once(now=EXPIRED)
        assert sweeper.sweep_once(now=EXPIRED) == []
        assert len(manager.get_request(request.request_id).decision_log) == 1

    def test_step_deadline_expires_before_request_deadline(
        self, manager, sweeper: TimeoutSweeper
    ) -> None:
        quick = manager.create_request("quick", {}).request
        slow = manager.create_request("replies", {}).request
        timed_out = sweeper.sweep_once(now=T0 + timedelta(hours=2))
        assert timed_out == [quick.request_id]
        assert manager.get_request(slow.request_id).status is ApprovalStatus.PENDING

    def test_decided_requests_are_skipped(self, manager, sweeper: TimeoutSweeper) -> None:
        request = manager.create_request("quick", {}).request
        manager.apply_decision(request.request_id, "approved", "m")
        assert sweeper.sweep_once(now=EXPIRED) == []
        assert manager.get_request(request.request_id).status is ApprovalStatus.APPROVED

    def test_failure_on_one_request_does_not_stop_the_pass(
        self, store, repository, evaluator
    ) -> None:
        manager = _manager(store, repository, evaluator, cls=FlakyManager)
        broken = manager.create_request("replies", {}).request
        healthy = manager.create_request("replies", {}).request
        manager.broken_id = broken.request_id
        sweeper = TimeoutSweeper(manager, repository)
        assert sweeper.sweep_once(now=EXPIRED) == [healthy.request_id]
        assert manager.get_request(broken.request_id).status is ApprovalStatus.PENDING

    def test_invalid_interval_rejected(self, manager, repository) -> None:
        with pytest.raises(ValueError):
            TimeoutSweeper(manager, repository, interval_seconds=0)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentSweeps:
    def test_two_concurrent_sweeps_time_out_exactly_once(
        self, manager, repository, sweeper: TimeoutSweeper
    ) -> None:
        request = manager.create_request("replies", {}).request
        other = TimeoutSweeper(manager, repository)
        barrier = threading.Barrier(2)
        results: list[list[str]] = []
        lock = threading.Lock()

        def run(s: TimeoutSweeper) -> None:
            barrier.wait(5)
            ids = s.sweep_once(now=EXPIRED)
            with lock:
                results.append(ids)

        threads = [threading.Thread(target=run, args=(s,)) for s in (sweeper, other)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted(len(ids) for ids in results) == [0, 1]
        final = manager.get_request(request.request_id)
        assert final.status is ApprovalStatus.TIMEOUT
        assert [e.outcome for e in final.decision_log] == [DecisionOutcome.TIMEOUT]

    def test_decision_racing_a_sweep_has_one_winner(
        self, manager, sweeper: TimeoutSweeper
    ) -> None:
        request = manager.create_request("quick", {}).request
        barrier = threading.Barrier(2)
        outcomes: dict[str, bool] = {}

        def decide() -> None:
            barrier.wait(5)
            outcomes["decision"] = manager.apply_decision(
                request.request_id, "approved", "m"
            ).applied

        def sweep() -> None:
            barrier.wait(5)
            outcomes["sweep"] = bool(sweeper.sweep_once(now=EXPIRED))

        threads = [threading.Thread(target=decide), threading.Thread(target=sweep)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted(outcomes.values()) == [False, True]
        final = manager.get_request(request.request_id)
        assert len(final.decision_log) == 1
        expected = ApprovalStatus.APPROVED if outcomes["decision"] else ApprovalStatus.TIMEOUT
        assert final.status is expected


# ---------------------------------------------------------------------------
# Background thread
# ---------------------------------------------------------------------------


class TestBackgroundSweeping:
    def test_start_and_stop(self, manager, sweeper: TimeoutSweeper) -> None:
        # Requests are created at a fixed past clock, so wall-clock time is past their deadline.
        request = manager.create_request("replies", {}).request
        sweeper.start()
        try:
            assert sweeper.running is True
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if manager.get_request(request.request_id).is_terminal:
                    break
                time.sleep(0.01)
        finally:
            sweeper.stop()
        assert sweeper.running is False
        assert manager.get_request(request.request_id).status is ApprovalStatus.TIMEOUT

    def test_start_twice_is_noop(self, sweeper: TimeoutSweeper) -> None:
        sweeper.start()
        try:
            first = sweeper._thread
            sweeper.start()
            assert sweeper._thread is first
        finally:
            sweeper.stop()

    def test_stop_without_start(self, sweeper: TimeoutSweeper) -> None:
        sweeper.stop()
        assert sweeper.running is False
        assert sweeper.interval_seconds == 0.01
