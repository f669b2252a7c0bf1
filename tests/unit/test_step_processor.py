"""Tests for StepProcessor dispatch of each step type."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from floworx_approval.approval.models import (
    ApprovalRequest,
    ApprovalStatus,
    AutoApproved,
    AwaitingDecision,
    StepError,
)
from floworx_approval.approval.steps import StepProcessor
from floworx_approval.conditions.collaborators import (
    InMemoryContactHistory,
    StaticRecipientDirectory,
)
from floworx_approval.conditions.evaluator import ConditionEvaluator
from floworx_approval.workflows.definitions import Step, StepType, WorkflowDefinition

NOW = datetime(2024, 1, 8, 11, 0, tzinfo=timezone.utc)  # Monday


@pytest.fixture()
def evaluator():
    ev = ConditionEvaluator(
        contacts=InMemoryContactHistory({"biz-1": ["known@example.com"]}),
        clock=lambda: NOW,
    )
    yield ev
    ev.close()


@pytest.fixture()
def processor(evaluator: ConditionEvaluator) -> StepProcessor:
    directory = StaticRecipientDirectory(
        managers={"biz-1": ["boss@example.com"]},
        owners={"biz-1": "owner@example.com"},
    )
    return StepProcessor(evaluator, directory=directory, app_url="https://app.test/")


def _request(step: Step, payload: dict | None = None, context: dict | None = None) -> ApprovalRequest:
    return ApprovalRequest(
        request_id="req-1",
        workflow_id="wf",
        scope="biz-1",
        action_payload=payload or {"from": "customer@example.com", "subject": "Quote", "body": "Hi"},
        context=context or {},
        status=ApprovalStatus.PENDING,
        current_step_index=0,
        steps=[step],
        created_at=NOW,
        timeout_at=NOW + timedelta(hours=24),
    )


# ---------------------------------------------------------------------------
# automatic_check
# ---------------------------------------------------------------------------


class TestAutomaticCheck:
    def test_failing_check_awaits_decision(self, processor: StepProcessor) -> None:
        step = Step(
            type=StepType.AUTOMATIC_CHECK,
            parameters={"checks": ["business_hours", "content_filter"]},
        )
        request = _request(step, {"from": "a@b.com", "body": "I will call my attorney"})
        result = processor.dispatch(request, step)
        assert isinstance(result, AwaitingDecision)
        assert result.notifications == ()
        assert [c.passed for c in result.checks] == [True, False]

    def test_all_checks_pass_auto_approves(self, processor: StepProcessor) -> None:
        step = Step(
            type=StepType.AUTOMATIC_CHECK,
            parameters={"checks": ["business_hours", "content_filter", "customer_history"]},
        )
        request = _request(step, {"from": "known@example.com", "body": "Thanks!"})
        result = processor.dispatch(request, step)
        assert isinstance(result, AutoApproved)
        assert len(result.checks) == 3

    def test_no_checks_does_not_auto_approve(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.AUTOMATIC_CHECK)
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert result.checks == ()


# ---------------------------------------------------------------------------
# manager_approval
# ---------------------------------------------------------------------------


class TestManagerApproval:
    def test_one_notification_per_configured_manager(self, processor: StepProcessor) -> None:
        step = Step(
            type=StepType.MANAGER_APPROVAL,
            parameters={"managers": ["m1@example.com", {"email": "m2@example.com"}]},
            timeout_hours=4,
        )
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert [n.recipient for n in result.notifications] == ["m1@example.com", "m2@example.com"]
        assert result.timeout_hours == 4
        first = result.notifications[0]
        assert first.subject == "Approval Required: Quote"
        assert first.action_link == "https://app.test/approve/req-1"
        assert first.type == "manager_approval"

    def test_falls_back_to_directory(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.MANAGER_APPROVAL)
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert [n.recipient for n in result.notifications] == ["boss@example.com"]

    def test_no_managers_is_step_error(self, evaluator: ConditionEvaluator) -> None:
        bare = StepProcessor(evaluator)
        step = Step(type=StepType.MANAGER_APPROVAL)
        result = bare.dispatch(_request(step), step)
        assert isinstance(result, StepError)
        assert "No managers" in result.reason

    def test_workflow_timeout_used_when_step_has_none(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.MANAGER_APPROVAL)
        workflow = WorkflowDefinition(id="wf", name="WF", timeout_hours=12)
        result = processor.dispatch(_request(step), step, workflow)
        assert isinstance(result, AwaitingDecision)
        assert result.timeout_hours == 12


# ---------------------------------------------------------------------------
# external_review / customer_confirmation / default_approval
# ---------------------------------------------------------------------------


class TestExternalReview:
    def test_reviewers_as_strings_and_mappings(self, processor: StepProcessor) -> None:
        step = Step(
            type=StepType.EXTERNAL_REVIEW,
            parameters={
                "reviewers": [
                    "legal@example.com",
                    {"name": "Warranty", "email": "warranty@example.com", "department": "warranty"},
                ]
            },
        )
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert len(result.notifications) == 2
        assert "(warranty)" in result.notifications[1].message

    def test_no_reviewers_is_step_error(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.EXTERNAL_REVIEW, parameters={"reviewers": [{"name": "nobody"}]})
        assert isinstance(processor.dispatch(_request(step), step), StepError)


class TestCustomerConfirmation:
    def test_context_customer_email_preferred(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.CUSTOMER_CONFIRMATION, parameters={"subject": "Service visit"})
        request = _request(step, context={"customer_email": "cust@example.com"})
        result = processor.dispatch(request, step)
        assert isinstance(result, AwaitingDecision)
        (notification,) = result.notifications
        assert notification.recipient == "cust@example.com"
        assert notification.subject == "Confirmation Required: Service visit"
        assert notification.action_link == "https://app.test/confirm/req-1"

    def test_falls_back_to_sender(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.CUSTOMER_CONFIRMATION)
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert result.notifications[0].recipient == "customer@example.com"

    def test_no_address_is_step_error(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.CUSTOMER_CONFIRMATION)
        result = processor.dispatch(_request(step, payload={"subject": "x"}), step)
        assert isinstance(result, StepError)


class TestDefaultApproval:
    def test_workflow_owner_email_preferred(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.DEFAULT_APPROVAL)
        workflow = WorkflowDefinition(id="wf", name="WF", owner_email="me@example.com")
        result = processor.dispatch(_request(step), step, workflow)
        assert isinstance(result, AwaitingDecision)
        assert result.notifications[0].recipient == "me@example.com"

    def test_directory_owner_used(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.DEFAULT_APPROVAL)
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert result.notifications[0].recipient == "owner@example.com"

    def test_no_owner_waits_silently(self, evaluator: ConditionEvaluator) -> None:
        bare = StepProcessor(evaluator)
        step = Step(type=StepType.DEFAULT_APPROVAL)
        result = bare.dispatch(_request(step), step)
        assert isinstance(result, AwaitingDecision)
        assert result.notifications == ()


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestDispatchFailures:
    def test_handler_exception_becomes_step_error(self, processor: StepProcessor) -> None:
        step = Step(type=StepType.EXTERNAL_REVIEW, parameters={"reviewers": 42})
        result = processor.dispatch(_request(step), step)
        assert isinstance(result, StepError)
        assert "TypeError" in result.reason

    def test_action_link_strips_trailing_slash(self, processor: StepProcessor) -> None:
        assert processor.action_link("abc", kind="reject") == "https://app.test/reject/abc"
