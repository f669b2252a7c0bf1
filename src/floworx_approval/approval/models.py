"""Runtime records for approval requests and step results.

An :class:`ApprovalRequest` is one instance of a gated action moving through
a workflow's steps.  It moves through::

    pending ──> awaiting_decision ──> approved | rejected | timeout
       └───────────────────────────────┘

Terminal statuses never change again.  Step handlers report a
:data:`StepResult`, a closed union of :class:`AutoApproved`,
:class:`AwaitingDecision` and :class:`StepError`.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from floworx_approval.workflows.definitions import Step


class ApprovalStatus(str, Enum):
    """Lifecycle states for an approval request."""

    PENDING = "pending"
    AWAITING_DECISION = "awaiting_decision"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.TIMEOUT})
ACTIVE_STATUSES = frozenset({ApprovalStatus.PENDING, ApprovalStatus.AWAITING_DECISION})


class DecisionOutcome(str, Enum):
    """Outcome recorded in the decision log."""

    APPROVED = "approved"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


class TimeoutPolicy(str, Enum):
    """Terminal status applied when a request times out."""

    TIMEOUT = "timeout"
    REJECT = "reject"
    APPROVE = "approve"

    def terminal_status(self) -> ApprovalStatus:
        match self:
            case TimeoutPolicy.REJECT:
                return ApprovalStatus.REJECTED
            case TimeoutPolicy.APPROVE:
                return ApprovalStatus.APPROVED
            case _:
                return ApprovalStatus.TIMEOUT


SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class DecisionRecord:
    """One entry in a request's decision log."""

    step_index: int
    outcome: DecisionOutcome
    actor_id: str
    comments: str
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "step_index": self.step_index,
            "outcome": self.outcome.value,
            "actor_id": self.actor_id,
            "comments": self.comments,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> DecisionRecord:
        return cls(
            step_index=int(data["step_index"]),  # type: ignore[arg-type]
            outcome=DecisionOutcome(data["outcome"]),
            actor_id=str(data["actor_id"]),
            comments=str(data.get("comments", "")),
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
        )


@dataclass
class ApprovalRequest:
    """A single approval request record.

    Attributes
    ----------
    request_id:
        Unique identifier generated at creation.
    workflow_id:
        The workflow definition this request instantiates.
    scope:
        Tenant / owner scope, copied from the workflow's ``owner_id``.
    action_payload:
        The gated action (typically an AI-drafted reply).  Opaque to the
        engine apart from condition and check lookups.
    context:
        Trigger context, e.g. ``{"classification": {"urgency": "low"}}``.
    status:
        Current lifecycle status.
    current_step_index:
        Zero-based index of the step under review.  Never decreases.
    steps:
        Copy of the workflow's effective steps taken at creation, so later
        edits to the workflow never reshape an in-flight request.
    created_at:
        UTC datetime of creation.
    timeout_at:
        ``created_at + workflow.timeout_hours``.  Fixed at creation.
    step_timeout_at:
        Optional earlier deadline for the current step.
    decided_at:
        UTC datetime the request reached a terminal status.
    decision_log:
        Every applied decision, in order.
    version:
        Incremented on each persisted change; compare-and-swap token.
    """

    request_id: str
    workflow_id: str
    scope: str | None
    action_payload: dict[str, object]
    context: dict[str, object]
    status: ApprovalStatus
    current_step_index: int
    steps: list[Step]
    created_at: datetime
    timeout_at: datetime
    step_timeout_at: datetime | None = None
    decided_at: datetime | None = None
    decision_log: list[DecisionRecord] = field(default_factory=list)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> Step:
        return self.steps[self.current_step_index]

    @property
    def is_final_step(self) -> bool:
        return self.current_step_index >= self.step_count - 1

    @property
    def deadline(self) -> datetime:
        """The earliest deadline that currently applies."""
        if self.step_timeout_at is not None and self.step_timeout_at < self.timeout_at:
            return self.step_timeout_at
        return self.timeout_at

    def copy(self) -> ApprovalRequest:
        """Return a deep copy detached from any repository."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "workflow_id": self.workflow_id,
            "scope": self.scope,
            "action_payload": self.action_payload,
            "context": self.context,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "steps": [step.model_dump(mode="json") for step in self.steps],
            "created_at": self.created_at.isoformat(),
            "timeout_at": self.timeout_at.isoformat(),
            "step_timeout_at": self.step_timeout_at.isoformat() if self.step_timeout_at else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "decision_log": [entry.to_dict() for entry in self.decision_log],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ApprovalRequest:
        def _dt(value: object) -> datetime | None:
            return datetime.fromisoformat(str(value)) if value else None

        return cls(
            request_id=str(data["request_id"]),
            workflow_id=str(data["workflow_id"]),
            scope=data.get("scope"),  # type: ignore[arg-type]
            action_payload=dict(data.get("action_payload") or {}),  # type: ignore[arg-type]
            context=dict(data.get("context") or {}),  # type: ignore[arg-type]
            status=ApprovalStatus(data["status"]),
            current_step_index=int(data["current_step_index"]),  # type: ignore[arg-type]
            steps=[Step.model_validate(raw) for raw in data.get("steps") or []],  # type: ignore[union-attr]
            created_at=datetime.fromisoformat(str(data["created_at"])),
            timeout_at=datetime.fromisoformat(str(data["timeout_at"])),
            step_timeout_at=_dt(data.get("step_timeout_at")),
            decided_at=_dt(data.get("decided_at")),
            decision_log=[
                DecisionRecord.from_dict(entry)
                for entry in data.get("decision_log") or []  # type: ignore[union-attr]
            ],
            version=int(data.get("version", 0)),  # type: ignore[arg-type]
        )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    """Fire-and-forget message handed to a notification dispatcher.

    Attributes
    ----------
    type:
        Step kind that produced it, e.g. ``"manager_approval"``.
    recipient:
        Address of the person asked to decide.
    subject:
        Short subject line.
    message:
        Body text.
    action_link:
        URL where the recipient records the decision.
    """

    type: str
    recipient: str
    subject: str
    message: str
    action_link: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "recipient": self.recipient,
            "subject": self.subject,
            "message": self.message,
            "action_link": self.action_link,
        }


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one automatic check."""

    check_type: str
    passed: bool
    message: str


@dataclass(frozen=True)
class AutoApproved:
    """The step approved itself; equivalent to a ``system`` approval."""

    reason: str = ""
    checks: tuple[CheckResult, ...] = ()


@dataclass(frozen=True)
class AwaitingDecision:
    """The step needs an external decision.

    ``notifications`` is empty when nobody could be notified; the request then
    stays ``pending`` until a manual override arrives.
    """

    notifications: tuple[Notification, ...] = ()
    timeout_hours: float | None = None
    checks: tuple[CheckResult, ...] = ()


@dataclass(frozen=True)
class StepError:
    """The step handler failed; the request escalates to manual review."""

    reason: str


StepResult = Union[AutoApproved, AwaitingDecision, StepError]


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecisionResult:
    """Returned by decision application and forced timeouts.

    Attributes
    ----------
    request:
        Snapshot of the request after the call.
    applied:
        ``False`` when the decision was a no-op (request already terminal,
        or the decision targeted a step that is no longer current).
    """

    request: ApprovalRequest
    applied: bool

    @property
    def status(self) -> ApprovalStatus:
        return self.request.status

    @property
    def completed(self) -> bool:
        return self.request.is_terminal


@dataclass(frozen=True)
class TriggerResult:
    """Returned by request creation.

    ``request`` is ``None`` when an auto-approve condition held and the
    action may proceed immediately.
    """

    auto_approved: bool
    request: ApprovalRequest | None = None
    matched_condition: str | None = None
