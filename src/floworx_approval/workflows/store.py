"""Workflow definition store.

The engine only ever reads workflow definitions.  Authoring is owned by an
external admin surface; this module offers an in-memory store that can be
seeded from configuration or from a YAML file.

The expected YAML structure is::

    workflows:
      - id: service-replies
        name: Service request replies
        timeout_hours: 8
        approval_steps:
          - type: automatic_check
            parameters:
              checks: [business_hours, content_filter]
          - type: manager_approval
        auto_approve_conditions:
          - type: low_urgency
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

import yaml

from floworx_approval.errors import NotFoundError
from floworx_approval.workflows.definitions import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowDefinitionStore(ABC):
    """Read-only view of workflow definitions used by the engine."""

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Return the workflow with ``workflow_id``.

        Raises
        ------
        NotFoundError
            If no workflow with that id exists.
        """

    @abstractmethod
    def list_workflows(self) -> list[WorkflowDefinition]:
        """Return every known workflow, highest priority first."""


class InMemoryWorkflowStore(WorkflowDefinitionStore):
    """Thread-safe dictionary-backed workflow store.

    Parameters
    ----------
    workflows:
        Initial definitions.  Later entries replace earlier ones with the
        same id.
    """

    def __init__(self, workflows: Iterable[WorkflowDefinition] = ()) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        for workflow in workflows:
            self.add(workflow)

    def add(self, workflow: WorkflowDefinition) -> None:
        """Register or replace a workflow definition."""
        with self._lock:
            replaced = workflow.id in self._workflows
            self._workflows[workflow.id] = workflow
        logger.debug(
            "%s workflow %r (%d steps, %d auto-approve conditions)",
            "Replaced" if replaced else "Registered",
            workflow.id,
            len(workflow.approval_steps),
            len(workflow.auto_approve_conditions),
        )

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("workflow", workflow_id)
        return workflow

    def list_workflows(self) -> list[WorkflowDefinition]:
        with self._lock:
            workflows = list(self._workflows.values())
        return sorted(workflows, key=lambda w: (-w.priority, w.id))

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)


def parse_workflows(raw: object) -> list[WorkflowDefinition]:
    """Validate a parsed YAML document into workflow definitions.

    Accepts either a mapping with a top-level ``workflows`` key or a bare
    list of workflow mappings.

    Raises
    ------
    ValueError
        When the document shape or any workflow fails validation.
    """
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("workflows", [])
    if not isinstance(raw, list):
        raise ValueError("Workflow document must be a list or contain a 'workflows' list.")
    return [WorkflowDefinition.model_validate(item) for item in raw]


def load_workflows(path: Path) -> InMemoryWorkflowStore:
    """Build a store from a YAML file of workflow definitions.

    Raises
    ------
    FileNotFoundError:
        When ``path`` does not exist.
    ValueError:
        When the content fails validation.
    """
    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    workflows = parse_workflows(raw)
    logger.info("Loaded %d workflow(s) from %s", len(workflows), path)
    return InMemoryWorkflowStore(workflows)
