"""Approval request lifecycle management.

:class:`ApprovalRequestManager` is the only component that writes approval
requests.  It creates them, applies human decisions, forces timeouts on
behalf of the sweeper, and drives step dispatch.

Every state change goes through :meth:`ApprovalRequestManager._transition`,
which holds the per-request lock for the read-modify-write and commits with
the repository's compare-and-swap.  A decision or timeout that arrives after
the request is terminal is a no-op that returns the existing state.

Step handlers and notification delivery run outside the lock.

Example
-------
>>> manager = ApprovalRequestManager(store, InMemoryApprovalRepository(), evaluator, processor)
>>> trigger = manager.create_request("refund-replies", {"from": "a@b.com", "body": "Refund $250"})
>>> trigger.request.status
<ApprovalStatus.AWAITING_DECISION: 'awaiting_decision'>
>>> manager.apply_decision(trigger.request.request_id, "approved", actor_id="mgr1").status
<ApprovalStatus.APPROVED: 'approved'>
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Mapping

from floworx_approval.approval.locks import KeyedLock
from floworx_approval.approval.models import (
    SYSTEM_ACTOR,
    ApprovalRequest,
    ApprovalStatus,
    AutoApproved,
    AwaitingDecision,
    DecisionOutcome,
    DecisionRecord,
    DecisionResult,
    Notification,
    StepError,
    StepResult,
    TimeoutPolicy,
    TriggerResult,
)
from floworx_approval.approval.notifier import LoggingDispatcher, NotificationDispatcher
from floworx_approval.approval.repository import ApprovalRepository
from floworx_approval.errors import NotFoundError, ValidationError
from floworx_approval.workflows.definitions import WorkflowDefinition
from floworx_approval.workflows.store import WorkflowDefinitionStore

if TYPE_CHECKING:
    from floworx_approval.approval.steps import StepProcessor
    from floworx_approval.audit.logger import AuditLogger
    from floworx_approval.conditions.evaluator import ConditionEvaluator

logger = logging.getLogger(__name__)

_DECIDABLE = frozenset({DecisionOutcome.APPROVED, DecisionOutcome.REJECTED})


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ApprovalRequestManager:
    """Creates, advances, decides and times out approval requests.

    Parameters
    ----------
    store:
        Source of workflow definitions.
    repository:
        Persistent request store with compare-and-swap.
    evaluator:
        Evaluates auto-approve conditions at creation.
    processor:
        Dispatches steps.
    dispatcher:
        Receives notifications produced by steps.  Defaults to logging them.
    audit:
        Optional JSONL audit trail.
    timeout_policy:
        Terminal status given to timed-out requests.
    clock:
        Returns the current UTC datetime.  Override in tests.
    """

    def __init__(
        self,
        store: WorkflowDefinitionStore,
        repository: ApprovalRepository,
        evaluator: ConditionEvaluator,
        processor: StepProcessor,
        dispatcher: NotificationDispatcher | None = None,
        audit: AuditLogger | None = None,
        timeout_policy: TimeoutPolicy = TimeoutPolicy.TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._evaluator = evaluator
        self._processor = processor
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._audit = audit
        self._timeout_policy = TimeoutPolicy(timeout_policy)
        self._clock = clock or _utcnow
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        workflow_id: str,
        action_payload: Mapping[str, object],
        context: Mapping[str, object] | None = None,
    ) -> TriggerResult:
        """Gate an action behind ``workflow_id``.

        If any auto-approve condition holds, nothing is persisted and the
        action may proceed.  Otherwise a ``pending`` request is stored and its
        first step dispatched before this method returns.

        Raises
        ------
        ValidationError
            If the workflow is unknown or disabled.
        """
        workflow = self._creatable_workflow(workflow_id)
        payload = dict(action_payload)
        ctx = dict(context or {})

        matched = self._evaluator.should_auto_approve(
            workflow.auto_approve_conditions, payload, ctx, workflow.owner_id
        )
        if matched is not None:
            logger.info(
                "Workflow %s auto-approved by condition %s; no request created.",
                workflow.id,
                matched.type.value,
            )
            self._record("auto_approved", workflow_id=workflow.id, condition=matched.type.value)
            return TriggerResult(auto_approved=True, matched_condition=matched.type.value)

        now = self._clock()
        request = ApprovalRequest(
            request_id=str(uuid.uuid4()),
            workflow_id=workflow.id,
            scope=workflow.owner_id,
            action_payload=payload,
            context=ctx,
            status=ApprovalStatus.PENDING,
            current_step_index=0,
            steps=workflow.effective_steps(),
            created_at=now,
            timeout_at=now + timedelta(hours=workflow.timeout_hours),
        )
        self._repository.add(request)
        logger.info(
            "Approval request created: id=%s workflow=%s steps=%d timeout_at=%s",
            request.request_id,
            workflow.id,
            request.step_count,
            request.timeout_at.isoformat(),
        )
        self._record(
            "request_created",
            request_id=request.request_id,
            workflow_id=workflow.id,
            timeout_at=request.timeout_at.isoformat(),
        )

        self._run_steps(request.request_id)
        return TriggerResult(auto_approved=False, request=self._repository.get(request.request_id))

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def apply_decision(
        self,
        request_id: str,
        outcome: DecisionOutcome | str,
        actor_id: str,
        comments: str = "",
        step_index: int | None = None,
    ) -> DecisionResult:
        """Apply a human decision to the current step.

        Parameters
        ----------
        request_id:
            The request to decide.
        outcome:
            ``"approved"`` or ``"rejected"``.
        actor_id:
            Identifier of the person deciding.
        comments:
            Optional free text stored in the decision log.
        step_index:
            Step the decision was made for.  When given and no longer current
            (the request has moved on), the decision is ignored.

        Returns
        -------
        DecisionResult
            ``applied`` is ``False`` when the request was already terminal
            or the decision was stale.

        Raises
        ------
        NotFoundError
            If no request with ``request_id`` exists.
        ValidationError
            If ``outcome`` is not a decidable outcome or ``actor_id`` is blank.
        """
        try:
            decided = DecisionOutcome(outcome)
        except ValueError:
            raise ValidationError(f"Unknown decision outcome {outcome!r}.") from None
        if decided not in _DECIDABLE:
            raise ValidationError(
                f"Decision outcome must be 'approved' or 'rejected', got {decided.value!r}."
            )
        if not actor_id or not actor_id.strip():
            raise ValidationError("A decision requires a non-empty actor_id.")

        result = self._transition(request_id, decided, actor_id, comments, step_index=step_index)
        if result.applied and not result.completed:
            self._run_steps(request_id)
            return DecisionResult(self._repository.get(request_id), applied=True)
        return result

    def force_timeout(self, request_id: str, now: datetime | None = None) -> DecisionResult:
        """Time out a request whose deadline has passed.

        Uses the same compare-and-swap path as :meth:`apply_decision` with
        actor ``system``.  A request that is terminal, or whose deadline is
        still in the future, is left untouched.
        """
        return self._transition(
            request_id,
            DecisionOutcome.TIMEOUT,
            SYSTEM_ACTOR,
            "Approval request timed out",
            expired_at=now or self._clock(),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> ApprovalRequest:
        """Return a snapshot of the request.

        Raises
        ------
        NotFoundError
            If no request with ``request_id`` exists.
        """
        return self._repository.get(request_id)

    def get_pending_approvals(self, scope: str | None = None) -> list[ApprovalRequest]:
        """Return requests still awaiting an outcome, oldest first."""
        return self._repository.list_pending(scope)

    @property
    def timeout_policy(self) -> TimeoutPolicy:
        return self._timeout_policy

    # ------------------------------------------------------------------
    # Step progression
    # ------------------------------------------------------------------

    def _run_steps(self, request_id: str) -> None:
        """Dispatch the current step, following automatic approvals onward."""
        while True:
            snapshot = self._repository.get(request_id)
            if snapshot.is_terminal:
                return
            step_index = snapshot.current_step_index
            step = snapshot.current_step
            result = self._processor.dispatch(snapshot, step, self._workflow_or_none(snapshot))
            self._record(
                "step_dispatched",
                request_id=request_id,
                step_index=step_index,
                step_type=step.type.value,
                result=type(result).__name__,
            )

            match result:
                case AutoApproved(reason=reason):
                    decision = self._transition(
                        request_id,
                        DecisionOutcome.APPROVED,
                        SYSTEM_ACTOR,
                        reason,
                        step_index=step_index,
                    )
                    if not decision.applied or decision.completed:
                        return
                case AwaitingDecision() | StepError():
                    if self._await_decision(request_id, step_index, result):
                        notifications = getattr(result, "notifications", ())
                        self._send(request_id, notifications)
                    return

    def _await_decision(self, request_id: str, step_index: int, result: StepResult) -> bool:
        """Record that the step now needs an external decision.

        Returns ``False`` when the request moved on while the step was being
        dispatched, in which case nothing is written or sent.
        """
        with self._locks.hold(request_id):
            while True:
                current = self._repository.get(request_id)
                if current.is_terminal or current.current_step_index != step_index:
                    return False
                updated = current.copy()
                match result:
                    case StepError(reason=reason):
                        logger.warning(
                            "Request %s step %d escalated to manual review: %s",
                            request_id,
                            step_index,
                            reason,
                        )
                        updated.status = ApprovalStatus.AWAITING_DECISION
                    case AwaitingDecision(notifications=notifications) if notifications:
                        updated.status = ApprovalStatus.AWAITING_DECISION
                hours = current.current_step.timeout_hours
                if hours is not None:
                    updated.step_timeout_at = min(
                        self._clock() + timedelta(hours=hours), current.timeout_at
                    )
                if (
                    updated.status == current.status
                    and updated.step_timeout_at == current.step_timeout_at
                ):
                    return True
                if self._repository.compare_and_swap(updated, current.version):
                    logger.info(
                        "Request %s step %d is %s",
                        request_id,
                        step_index,
                        updated.status.value,
                    )
                    return True

    def _send(self, request_id: str, notifications: tuple[Notification, ...]) -> None:
        for notification in notifications:
            try:
                delivered = self._dispatcher.send(notification)
            except Exception:
                logger.exception(
                    "Notification to %s for request %s raised; state is unchanged.",
                    notification.recipient,
                    request_id,
                )
                continue
            if not delivered:
                logger.warning(
                    "Notification to %s for request %s was not delivered.",
                    notification.recipient,
                    request_id,
                )

    # ------------------------------------------------------------------
    # Atomic transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        request_id: str,
        outcome: DecisionOutcome,
        actor_id: str,
        comments: str,
        step_index: int | None = None,
        expired_at: datetime | None = None,
    ) -> DecisionResult:
        """Apply one decision under the per-request lock.

        The read-modify-write is retried when the compare-and-swap loses to a
        writer outside this process; a terminal or stale request ends the
        retry as a no-op.
        """
        with self._locks.hold(request_id):
            while True:
                current = self._repository.get(request_id)
                if current.is_terminal:
                    logger.info(
                        "Ignoring %s for request %s: already %s.",
                        outcome.value,
                        request_id,
                        current.status.value,
                    )
                    return DecisionResult(current, applied=False)
                if step_index is not None and step_index != current.current_step_index:
                    logger.info(
                        "Ignoring stale %s for request %s: step %d is no longer current (now %d).",
                        outcome.value,
                        request_id,
                        step_index,
                        current.current_step_index,
                    )
                    return DecisionResult(current, applied=False)
                if expired_at is not None and expired_at < current.deadline:
                    return DecisionResult(current, applied=False)

                now = self._clock()
                updated = current.copy()
                updated.decision_log.append(
                    DecisionRecord(
                        step_index=current.current_step_index,
                        outcome=outcome,
                        actor_id=actor_id,
                        comments=comments,
                        timestamp=now,
                    )
                )
                match outcome:
                    case DecisionOutcome.REJECTED:
                        updated.status = ApprovalStatus.REJECTED
                        updated.decided_at = now
                    case DecisionOutcome.TIMEOUT:
                        updated.status = self._timeout_policy.terminal_status()
                        updated.decided_at = now
                    case DecisionOutcome.APPROVED if current.is_final_step:
                        updated.status = ApprovalStatus.APPROVED
                        updated.decided_at = now
                    case DecisionOutcome.APPROVED:
                        updated.current_step_index += 1
                        updated.status = ApprovalStatus.PENDING
                        updated.step_timeout_at = None

                if self._repository.compare_and_swap(updated, current.version):
                    break
                logger.debug("Compare-and-swap lost for request %s; re-reading.", request_id)

        if outcome is DecisionOutcome.TIMEOUT:
            logger.warning(
                "Approval request %s timed out at step %d; status=%s.",
                request_id,
                current.current_step_index,
                updated.status.value,
            )
            self._record(
                "request_timed_out",
                request_id=request_id,
                step_index=current.current_step_index,
                status=updated.status.value,
            )
        else:
            logger.info(
                "Decision applied: id=%s step=%d outcome=%s actor=%s status=%s",
                request_id,
                current.current_step_index,
                outcome.value,
                actor_id,
                updated.status.value,
            )
            self._record(
                "decision_applied",
                request_id=request_id,
                step_index=current.current_step_index,
                outcome=outcome.value,
                actor_id=actor_id,
                status=updated.status.value,
            )
        return DecisionResult(updated, applied=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _creatable_workflow(self, workflow_id: str) -> WorkflowDefinition:
        try:
            workflow = self._store.get_workflow(workflow_id)
        except NotFoundError:
            raise ValidationError(f"Unknown workflow {workflow_id!r}.") from None
        if not workflow.enabled:
            raise ValidationError(f"Workflow {workflow_id!r} is disabled.")
        return workflow

    def _workflow_or_none(self, request: ApprovalRequest) -> WorkflowDefinition | None:
        try:
            return self._store.get_workflow(request.workflow_id)
        except NotFoundError:
            logger.warning(
                "Workflow %s of request %s no longer exists; continuing from the stored steps.",
                request.workflow_id,
                request.request_id,
            )
            return None

    def _record(self, event: str, **fields: object) -> None:
        if self._audit is not None:
            self._audit.log(event, **fields)
