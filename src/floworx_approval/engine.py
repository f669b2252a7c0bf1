"""Convenience facade that wires the approval engine from configuration.

Example
-------
::

    from floworx_approval import ApprovalEngine
    engine = ApprovalEngine.from_config(ConfigLoader().load(Path("approvals.yaml")))
    trigger = engine.create_request("refund-replies", {"from": "a@b.com", "body": "Refund $40"})
    if trigger.auto_approved:
        send_reply()

"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Mapping

from floworx_approval.approval.manager import ApprovalRequestManager
from floworx_approval.approval.models import ApprovalRequest, DecisionResult, TriggerResult
from floworx_approval.approval.notifier import (
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
)
from floworx_approval.approval.repository import (
    ApprovalRepository,
    InMemoryApprovalRepository,
    SqliteApprovalRepository,
)
from floworx_approval.approval.steps import StepProcessor
from floworx_approval.approval.sweeper import TimeoutSweeper
from floworx_approval.audit.logger import AuditLogger
from floworx_approval.conditions.collaborators import (
    InMemoryContactHistory,
    StaticRecipientDirectory,
    WeeklyScheduleCalendar,
)
from floworx_approval.conditions.evaluator import ConditionEvaluator
from floworx_approval.config import EngineConfig
from floworx_approval.workflows.definitions import WorkflowDefinition
from floworx_approval.workflows.store import InMemoryWorkflowStore, WorkflowDefinitionStore

logger = logging.getLogger(__name__)


class ApprovalEngine:
    """All approval engine components behind one object.

    Parameters
    ----------
    manager:
        The request manager every operation delegates to.
    sweeper:
        The timeout sweeper sharing the manager's repository.
    store:
        Workflow definitions.
    repository:
        Approval request storage.
    evaluator:
        Condition evaluator; closed by :meth:`close`.
    """

    def __init__(
        self,
        manager: ApprovalRequestManager,
        sweeper: TimeoutSweeper,
        store: WorkflowDefinitionStore,
        repository: ApprovalRepository,
        evaluator: ConditionEvaluator,
    ) -> None:
        self.manager = manager
        self.sweeper = sweeper
        self.store = store
        self.repository = repository
        self._evaluator = evaluator

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        dispatcher: NotificationDispatcher | None = None,
        repository: ApprovalRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ApprovalEngine:
        """Build every component from a validated configuration.

        ``dispatcher`` and ``repository`` override what the configuration
        would otherwise select.
        """
        hours = config.business_hours
        calendar = WeeklyScheduleCalendar(
            schedule=hours.week(),
            tz_name=hours.timezone,
            scope_schedules={scope: hours.week(scope) for scope in hours.scopes},
        )
        evaluator = ConditionEvaluator(
            calendar=calendar,
            contacts=InMemoryContactHistory(config.known_contacts),
            lookup_timeout_seconds=config.engine.lookup_timeout_seconds,
            clock=clock,
        )
        processor = StepProcessor(
            evaluator,
            directory=StaticRecipientDirectory(
                managers=config.recipients.managers, owners=config.recipients.owners
            ),
            app_url=config.notifications.app_url,
        )
        store = InMemoryWorkflowStore(
            _with_default_timeout(w, config.engine.default_timeout_hours) for w in config.workflows
        )
        if repository is None:
            repository = (
                SqliteApprovalRepository(config.store.path)
                if config.store.path is not None
                else InMemoryApprovalRepository()
            )
        if dispatcher is None:
            notifications = config.notifications
            dispatcher = (
                WebhookDispatcher(
                    notifications.webhook_url,
                    webhook_format=notifications.webhook_format,
                    timeout_seconds=notifications.timeout_seconds,
                )
                if notifications.webhook_url
                else LoggingDispatcher()
            )
        audit = AuditLogger(config.audit.log_path) if config.audit.log_path is not None else None

        manager = ApprovalRequestManager(
            store,
            repository,
            evaluator,
            processor,
            dispatcher=dispatcher,
            audit=audit,
            timeout_policy=config.engine.timeout_policy,
            clock=clock,
        )
        sweeper = TimeoutSweeper(
            manager, repository, interval_seconds=config.engine.sweep_interval_seconds
        )
        logger.debug(
            "Approval engine built: %d workflow(s), repository=%s, dispatcher=%s",
            len(config.workflows),
            type(repository).__name__,
            type(dispatcher).__name__,
        )
        return cls(manager, sweeper, store, repository, evaluator)

    # ------------------------------------------------------------------
    # Delegated operations
    # ------------------------------------------------------------------

    def create_request(
        self,
        workflow_id: str,
        action_payload: Mapping[str, object],
        context: Mapping[str, object] | None = None,
    ) -> TriggerResult:
        return self.manager.create_request(workflow_id, action_payload, context)

    def apply_decision(
        self,
        request_id: str,
        outcome: str,
        actor_id: str,
        comments: str = "",
        step_index: int | None = None,
    ) -> DecisionResult:
        return self.manager.apply_decision(request_id, outcome, actor_id, comments, step_index)

    def get_pending_approvals(self, scope: str | None = None) -> list[ApprovalRequest]:
        return self.manager.get_pending_approvals(scope)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self.store.get_workflow(workflow_id)

    def sweep(self, now: datetime | None = None) -> list[str]:
        return self.sweeper.sweep_once(now)

    def close(self) -> None:
        """Stop the sweeper thread and release lookup workers."""
        self.sweeper.stop()
        self._evaluator.close()

    def __enter__(self) -> ApprovalEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _with_default_timeout(workflow: WorkflowDefinition, default_hours: float) -> WorkflowDefinition:
    if "timeout_hours" in workflow.model_fields_set:
        return workflow
    return workflow.model_copy(update={"timeout_hours": default_hours})
