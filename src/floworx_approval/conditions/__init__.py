"""Condition evaluation and the read-only collaborators it consults."""
from __future__ import annotations

from floworx_approval.conditions.collaborators import (
    BusinessHoursCalendar,
    ContactHistory,
    DayHours,
    InMemoryContactHistory,
    RecipientDirectory,
    StaticRecipientDirectory,
    WeeklyScheduleCalendar,
)
from floworx_approval.conditions.evaluator import ConditionEvaluator, extract_amount, payload_text

__all__ = [
    "BusinessHoursCalendar",
    "ConditionEvaluator",
    "ContactHistory",
    "DayHours",
    "InMemoryContactHistory",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    "WeeklyScheduleCalendar",
    "extract_amount",
    "payload_text",
]
