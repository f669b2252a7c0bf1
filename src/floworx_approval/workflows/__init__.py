"""Workflow definitions and the read-only store the engine consults."""
from __future__ import annotations

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
    parse_workflows,
)

__all__ = [
    "CheckType",
    "Condition",
    "ConditionType",
    "InMemoryWorkflowStore",
    "Step",
    "StepType",
    "WorkflowDefinition",
    "WorkflowDefinitionStore",
    "load_workflows",
    "parse_workflows",
]
