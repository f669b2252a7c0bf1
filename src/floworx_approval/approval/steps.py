"""Approval step dispatch.

The :class:`StepProcessor` hands the current step of a request to the handler
registered for its :class:`~floworx_approval.workflows.definitions.StepType`
and returns a :data:`~floworx_approval.approval.models.StepResult`:

- ``automatic_check``        — runs the configured checks; :class:`AutoApproved`
  only when every check passes, otherwise :class:`AwaitingDecision` so a
  human can override
- ``manager_approval``       — one notification per configured manager
- ``external_review``        — one notification per configured reviewer
- ``customer_confirmation``  — one notification to the customer
- ``default_approval``       — one notification to the workflow owner

Dispatch never blocks waiting for a decision; decisions arrive later
through the request manager.  Handler exceptions are caught here and
reported as :class:`StepError`.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Mapping

from floworx_approval.approval.models import (
    ApprovalRequest,
    AutoApproved,
    AwaitingDecision,
    Notification,
    StepError,
    StepResult,
)
from floworx_approval.conditions.collaborators import RecipientDirectory, StaticRecipientDirectory
from floworx_approval.workflows.definitions import Step, StepType, WorkflowDefinition

if TYPE_CHECKING:
    from floworx_approval.conditions.evaluator import ConditionEvaluator

logger = logging.getLogger(__name__)

StepHandler = Callable[[ApprovalRequest, Step, "WorkflowDefinition | None"], StepResult]

DEFAULT_APP_URL = "https://app.floworx-iq.com"


def _subject_of(request: ApprovalRequest) -> str:
    return str(request.action_payload.get("subject") or request.workflow_id)


def _sender_of(request: ApprovalRequest) -> str:
    return str(request.action_payload.get("from") or "unknown sender")


class StepProcessor:
    """Dispatches approval steps to their handlers.

    Parameters
    ----------
    evaluator:
        Runs the checks of ``automatic_check`` steps.
    directory:
        Source of manager and owner contacts when a step does not list its
        own recipients.
    app_url:
        Base URL of the approval UI, used to build action links.
    """

    def __init__(
        self,
        evaluator: ConditionEvaluator,
        directory: RecipientDirectory | None = None,
        app_url: str = DEFAULT_APP_URL,
    ) -> None:
        self._evaluator = evaluator
        self._directory = directory or StaticRecipientDirectory()
        self._app_url = app_url.rstrip("/")
        self._handlers: dict[StepType, StepHandler] = {
            StepType.AUTOMATIC_CHECK: self._automatic_check,
            StepType.MANAGER_APPROVAL: self._manager_approval,
            StepType.EXTERNAL_REVIEW: self._external_review,
            StepType.CUSTOMER_CONFIRMATION: self._customer_confirmation,
            StepType.DEFAULT_APPROVAL: self._default_approval,
        }
        missing = [t.value for t in StepType if t not in self._handlers]
        if missing:
            raise TypeError(f"No handler registered for step type(s): {missing}")

    def dispatch(
        self,
        request: ApprovalRequest,
        step: Step,
        workflow: WorkflowDefinition | None = None,
    ) -> StepResult:
        """Run the handler for ``step`` against ``request``.

        Parameters
        ----------
        request:
            Snapshot of the request; handlers never mutate it.
        step:
            The step at ``request.current_step_index``.
        workflow:
            The request's workflow, used for the owner contact and the
            request-level timeout shown to reviewers.

        Returns
        -------
        StepResult
            Never raises; handler failures become :class:`StepError`.
        """
        logger.info(
            "Dispatching step %d/%d (%s) for request %s",
            request.current_step_index + 1,
            request.step_count,
            step.type.value,
            request.request_id,
        )
        try:
            return self._handlers[step.type](request, step, workflow)
        except Exception as exc:
            logger.exception(
                "Step %d (%s) failed for request %s; escalating to manual review.",
                request.current_step_index,
                step.type.value,
                request.request_id,
            )
            return StepError(reason=f"{type(exc).__name__}: {exc}")

    def action_link(self, request_id: str, kind: str = "approve") -> str:
        return f"{self._app_url}/{kind}/{request_id}"

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _automatic_check(self, request, step, workflow) -> StepResult:
        checks = step.parameters.get("checks") or []
        results = tuple(self._evaluator.run_check(check, request) for check in checks)  # type: ignore[union-attr]
        for result in results:
            logger.debug(
                "Request %s check %s: passed=%s (%s)",
                request.request_id,
                result.check_type,
                result.passed,
                result.message,
            )
        if results and all(r.passed for r in results):
            return AutoApproved(reason="All automatic checks passed", checks=results)
        return AwaitingDecision(
            notifications=(),
            timeout_hours=self._timeout_hours(step, workflow),
            checks=results,
        )

    def _manager_approval(self, request, step, workflow) -> StepResult:
        managers = _addresses(step.parameters.get("managers")) or self._directory.managers(
            request.scope
        )
        if not managers:
            return StepError(reason="No managers configured for approval")
        subject = _subject_of(request)
        message = (
            "Please review and approve the following email response:\n\n"
            f"From: {_sender_of(request)}\n"
            f"Subject: {subject}\n\n"
            f"Action required: {step.description or 'Manager approval'}"
        )
        notifications = tuple(
            Notification(
                type=StepType.MANAGER_APPROVAL.value,
                recipient=manager,
                subject=f"Approval Required: {subject}",
                message=message,
                action_link=self.action_link(request.request_id),
            )
            for manager in managers
        )
        return AwaitingDecision(notifications, self._timeout_hours(step, workflow))

    def _external_review(self, request, step, workflow) -> StepResult:
        reviewers = step.parameters.get("reviewers") or []
        notifications: list[Notification] = []
        for reviewer in reviewers:  # type: ignore[union-attr]
            if isinstance(reviewer, Mapping):
                address = str(reviewer.get("email") or "")
                department = reviewer.get("department")
            else:
                address, department = str(reviewer), None
            if not address:
                continue
            detail = f" ({department})" if department else ""
            notifications.append(
                Notification(
                    type=StepType.EXTERNAL_REVIEW.value,
                    recipient=address,
                    subject=f"External Review Required: {_subject_of(request)}",
                    message=(
                        f"External review{detail} requested for an email response to "
                        f"{_sender_of(request)}.\n\n{step.description}".rstrip()
                    ),
                    action_link=self.action_link(request.request_id),
                )
            )
        if not notifications:
            return StepError(reason="No reviewers configured for external review")
        return AwaitingDecision(tuple(notifications), self._timeout_hours(step, workflow))

    def _customer_confirmation(self, request, step, workflow) -> StepResult:
        customer = request.context.get("customer_email") or request.action_payload.get("from")
        if not customer:
            return StepError(reason="No customer address available for confirmation")
        notification = Notification(
            type=StepType.CUSTOMER_CONFIRMATION.value,
            recipient=str(customer),
            subject=f"Confirmation Required: {step.parameters.get('subject') or 'Service Request'}",
            message=str(
                step.parameters.get("message")
                or "Please confirm you would like to proceed with this request."
            ),
            action_link=self.action_link(request.request_id, kind="confirm"),
        )
        return AwaitingDecision((notification,), self._timeout_hours(step, workflow))

    def _default_approval(self, request, step, workflow) -> StepResult:
        owner = (workflow.owner_email if workflow else None) or self._directory.owner(
            request.scope
        )
        if not owner:
            logger.info(
                "Request %s has no owner contact; waiting for a manual decision.",
                request.request_id,
            )
            return AwaitingDecision((), self._timeout_hours(step, workflow))
        notification = Notification(
            type=StepType.DEFAULT_APPROVAL.value,
            recipient=owner,
            subject=f"Approval Required: {_subject_of(request)}",
            message=f"Email from {_sender_of(request)} requires your approval before responding.",
            action_link=self.action_link(request.request_id),
        )
        return AwaitingDecision((notification,), self._timeout_hours(step, workflow))

    @staticmethod
    def _timeout_hours(step: Step, workflow: WorkflowDefinition | None) -> float | None:
        if step.timeout_hours is not None:
            return step.timeout_hours
        return workflow.timeout_hours if workflow else None


def _addresses(raw: object) -> list[str]:
    """Normalise a recipient list of strings or ``{"email": ...}`` mappings."""
    if not raw:
        return []
    addresses: list[str] = []
    for entry in raw:  # type: ignore[union-attr]
        if isinstance(entry, Mapping):
            entry = entry.get("email")
        if entry:
            addresses.append(str(entry))
    return addresses
