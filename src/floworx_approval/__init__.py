"""floworx-approval-engine — Approval workflow engine for automated business email.

Gates an automated action (such as sending an AI-drafted reply) behind zero
or more ordered approval steps, each of which may auto-approve, require a
human decision, or time out.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import floworx_approval as fa
>>> engine = fa.ApprovalEngine.from_config(fa.ConfigLoader().load_string('''
... workflows:
...   - id: replies
...     name: AI reply review
...     approval_steps: [{type: manager_approval, parameters: {managers: [boss@example.com]}}]
... '''))
>>> trigger = engine.create_request("replies", {"from": "c@example.com", "subject": "Quote"})
>>> trigger.request.status
<ApprovalStatus.AWAITING_DECISION: 'awaiting_decision'>
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from floworx_approval.errors import (
    ApprovalEngineError,
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    ValidationError,
)

# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------
from floworx_approval.workflows.definitions import (
    CheckType,
    Condition,
    ConditionType,
    Step,
    StepType,
    WorkflowDefinition,
)
from floworx_approval.workflows.store import (
    InMemoryWorkflowStore,
    WorkflowDefinitionStore,
    load_workflows,
)

# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------
from floworx_approval.conditions.collaborators import (
    BusinessHoursCalendar,
    ContactHistory,
    InMemoryContactHistory,
    RecipientDirectory,
    StaticRecipientDirectory,
    WeeklyScheduleCalendar,
)
from floworx_approval.conditions.evaluator import ConditionEvaluator

# ---------------------------------------------------------------------------
# Approval lifecycle
# ---------------------------------------------------------------------------
from floworx_approval.approval.models import (
    ApprovalRequest,
    ApprovalStatus,
    AutoApproved,
    AwaitingDecision,
    DecisionOutcome,
    DecisionResult,
    Notification,
    StepError,
    TimeoutPolicy,
    TriggerResult,
)
from floworx_approval.approval.repository import (
    ApprovalRepository,
    InMemoryApprovalRepository,
    SqliteApprovalRepository,
)
from floworx_approval.approval.notifier import (
    LoggingDispatcher,
    NotificationDispatcher,
    RecordingDispatcher,
    WebhookDispatcher,
)
from floworx_approval.approval.steps import StepProcessor
from floworx_approval.approval.manager import ApprovalRequestManager
from floworx_approval.approval.sweeper import TimeoutSweeper

# ---------------------------------------------------------------------------
# Audit, configuration, facade
# ---------------------------------------------------------------------------
from floworx_approval.audit.logger import AuditLogger
from floworx_approval.config import ConfigLoader, EngineConfig
from floworx_approval.engine import ApprovalEngine

__all__ = [
    "__version__",
    # Errors
    "ApprovalEngineError",
    "ConflictError",
    "ExternalDependencyError",
    "NotFoundError",
    "ValidationError",
    # Workflows
    "CheckType",
    "Condition",
    "ConditionType",
    "InMemoryWorkflowStore",
    "Step",
    "StepType",
    "WorkflowDefinition",
    "WorkflowDefinitionStore",
    "load_workflows",
    # Conditions
    "BusinessHoursCalendar",
    "ConditionEvaluator",
    "ContactHistory",
    "InMemoryContactHistory",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    "WeeklyScheduleCalendar",
    # Approval lifecycle
    "ApprovalRepository",
    "ApprovalRequest",
    "ApprovalRequestManager",
    "ApprovalStatus",
    "AutoApproved",
    "AwaitingDecision",
    "DecisionOutcome",
    "DecisionResult",
    "InMemoryApprovalRepository",
    "SqliteApprovalRepository",
    "LoggingDispatcher",
    "Notification",
    "NotificationDispatcher",
    "RecordingDispatcher",
    "StepError",
    "StepProcessor",
    "TimeoutPolicy",
    "TimeoutSweeper",
    "TriggerResult",
    "WebhookDispatcher",
    # Audit, configuration, facade
    "ApprovalEngine",
    "AuditLogger",
    "ConfigLoader",
    "EngineConfig",
]
