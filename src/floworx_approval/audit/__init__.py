"""Audit trail for approval lifecycle events."""
from __future__ import annotations

from floworx_approval.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
