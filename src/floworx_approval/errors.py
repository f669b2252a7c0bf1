"""Exception hierarchy for the approval engine.

Only :class:`ValidationError` is surfaced synchronously to a trigger caller.
Everything discovered after a request has been created degrades to "needs a
manual decision" instead of propagating.
"""
from __future__ import annotations


class ApprovalEngineError(Exception):
    """Base class for all approval engine errors."""


class ValidationError(ApprovalEngineError):
    """Raised when a trigger or decision is rejected before any state change.

    Examples: an unknown or disabled workflow at creation time, or a decision
    outcome other than ``approved`` / ``rejected``.
    """


class NotFoundError(ApprovalEngineError, KeyError):
    """Raised when a workflow or approval request id is unknown.

    Attributes
    ----------
    kind:
        ``"workflow"`` or ``"approval request"``.
    identifier:
        The id that was looked up.
    """

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"No {kind} found with id={identifier!r}.")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message.
        return str(self.args[0])


class ExternalDependencyError(ApprovalEngineError):
    """Raised when a read-only collaborator lookup fails or times out.

    Condition evaluation recovers from this locally by treating the
    condition as false.
    """

    def __init__(self, dependency: str, message: str) -> None:
        self.dependency = dependency
        super().__init__(f"{dependency}: {message}")


class ConflictError(ApprovalEngineError):
    """Raised by a repository when a record id is inserted twice."""
