"""Workflow definition schema — Pydantic v2 models.

A workflow definition is the template for one class of gated action: which
conditions let the action through without review, which ordered approval
steps it must otherwise pass, and how long the whole request may stay open.

Example
-------
>>> workflow = WorkflowDefinition.model_validate({
...     "id": "refunds",
...     "name": "Refund replies",
...     "approval_steps": [{"type": "manager_approval"}],
...     "auto_approve_conditions": [{"type": "small_amount", "parameters": {"threshold": 50}}],
... })
>>> workflow.effective_steps()[0].type
<StepType.MANAGER_APPROVAL: 'manager_approval'>
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StepType(str, Enum):
    """Kinds of approval step a workflow can contain."""

    MANAGER_APPROVAL = "manager_approval"
    AUTOMATIC_CHECK = "automatic_check"
    EXTERNAL_REVIEW = "external_review"
    CUSTOMER_CONFIRMATION = "customer_confirmation"
    DEFAULT_APPROVAL = "default_approval"


class ConditionType(str, Enum):
    """Predicates that can auto-approve an action."""

    LOW_URGENCY = "low_urgency"
    ROUTINE_CATEGORY = "routine_category"
    BUSINESS_HOURS = "business_hours"
    KNOWN_CUSTOMER = "known_customer"
    SMALL_AMOUNT = "small_amount"
    STANDARD_REQUEST = "standard_request"


class CheckType(str, Enum):
    """Checks an ``automatic_check`` step can run."""

    BUSINESS_HOURS = "business_hours"
    CUSTOMER_HISTORY = "customer_history"
    CONTENT_FILTER = "content_filter"


# ---------------------------------------------------------------------------
# Conditions and steps
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    """A boolean predicate over the action payload and trigger context.

    Attributes
    ----------
    type:
        The condition kind.
    parameters:
        Handler-specific settings, e.g. ``{"threshold": 250}`` for
        ``small_amount`` or ``{"keywords": ["hours", "directions"]}`` for
        ``standard_request``.
    """

    type: ConditionType
    parameters: dict[str, object] = Field(default_factory=dict)


class Step(BaseModel):
    """One stage of human or automated review.

    Attributes
    ----------
    type:
        The step kind; selects the handler in the step processor.
    parameters:
        Handler-specific settings: ``managers`` for manager approval,
        ``reviewers`` for external review, ``checks`` for automatic checks,
        ``subject`` / ``message`` for customer confirmation.
    timeout_hours:
        Optional per-step deadline.  It can shorten, never extend, the
        request-level deadline.
    description:
        Text included in reviewer notifications.
    """

    type: StepType
    parameters: dict[str, object] = Field(default_factory=dict)
    timeout_hours: float | None = Field(default=None, gt=0)
    description: str = ""

    @field_validator("parameters")
    @classmethod
    def validate_checks(cls, value: dict[str, object]) -> dict[str, object]:
        checks = value.get("checks")
        if checks is None:
            return value
        if not isinstance(checks, list):
            raise ValueError("'checks' must be a list")
        valid = {c.value for c in CheckType}
        for check in checks:
            check_type = check.get("type") if isinstance(check, dict) else check
            if check_type not in valid:
                raise ValueError(f"Unknown check type '{check_type}'. Valid: {sorted(valid)}")
        return value


_IMPLICIT_STEP = Step(type=StepType.DEFAULT_APPROVAL, description="Owner approval")


class WorkflowDefinition(BaseModel):
    """Template describing steps and auto-approve rules for one gated action.

    Attributes
    ----------
    id:
        Unique workflow identifier.
    name:
        Human-readable name, used in notification subjects.
    description:
        Free-form description.
    enabled:
        Disabled workflows refuse new requests.  In-flight requests are not
        affected.
    priority:
        Ordering hint for the upstream trigger matcher.
    owner_id:
        Tenant / business scope that requests for this workflow are filed under.
    owner_email:
        Contact notified by the implicit ``default_approval`` step.
    trigger_conditions:
        Opaque to the engine; owned by the upstream trigger pipeline.
    approval_steps:
        Ordered review steps.  An empty list means one implicit
        ``default_approval`` step.
    auto_approve_conditions:
        Any condition that holds lets the action through (OR semantics).
    timeout_hours:
        Lifetime of a request created from this workflow.
    """

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 5
    owner_id: str | None = None
    owner_email: str | None = None
    trigger_conditions: list[object] = Field(default_factory=list)
    approval_steps: list[Step] = Field(default_factory=list)
    auto_approve_conditions: list[Condition] = Field(default_factory=list)
    timeout_hours: float = Field(default=24.0, gt=0)
    metadata: dict[str, object] = Field(default_factory=dict)

    @field_validator("id", "name")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    def effective_steps(self) -> list[Step]:
        """Return the steps a request actually walks through."""
        return list(self.approval_steps) or [_IMPLICIT_STEP]
