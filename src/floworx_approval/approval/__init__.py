"""Approval request lifecycle package.

Provides the request and step-result records, repositories with
compare-and-swap, step dispatch, the request manager, the timeout sweeper
and notification dispatchers.
"""
from __future__ import annotations

from floworx_approval.approval.models import (
    ApprovalRequest,
    ApprovalStatus,
    AutoApproved,
    AwaitingDecision,
    CheckResult,
    DecisionOutcome,
    DecisionRecord,
    DecisionResult,
    Notification,
    StepError,
    StepResult,
    TimeoutPolicy,
    TriggerResult,
)
from floworx_approval.approval.notifier import (
    LoggingDispatcher,
    NotificationDispatcher,
    RecordingDispatcher,
    WebhookDispatcher,
)
from floworx_approval.approval.repository import (
    ApprovalRepository,
    InMemoryApprovalRepository,
    SqliteApprovalRepository,
)
from floworx_approval.approval.manager import ApprovalRequestManager
from floworx_approval.approval.steps import StepProcessor
from floworx_approval.approval.sweeper import TimeoutSweeper

__all__ = [
    "ApprovalRepository",
    "ApprovalRequest",
    "ApprovalRequestManager",
    "ApprovalStatus",
    "AutoApproved",
    "AwaitingDecision",
    "CheckResult",
    "DecisionOutcome",
    "DecisionRecord",
    "DecisionResult",
    "InMemoryApprovalRepository",
    "SqliteApprovalRepository",
    "LoggingDispatcher",
    "Notification",
    "NotificationDispatcher",
    "RecordingDispatcher",
    "StepError",
    "StepProcessor",
    "StepResult",
    "TimeoutPolicy",
    "TimeoutSweeper",
    "TriggerResult",
    "WebhookDispatcher",
]
