"""Read-only collaborators consulted while evaluating conditions and steps.

These stand at the edge of the engine: a business-hours calendar, the
history of prior contacts, and the directory of people who may be asked to
approve.  Production deployments back them with the tenant database; the
implementations here are configuration-driven.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Iterable, Mapping
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

WEEKDAYS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


# ---------------------------------------------------------------------------
# Business hours
# ---------------------------------------------------------------------------


def parse_clock(value: str) -> time:
    """Parse ``H:MM`` or ``HH:MM`` into a :class:`datetime.time`.

    Raises
    ------
    ValueError
        If ``value`` is not a valid 24-hour clock time.
    """
    hours, sep, minutes = str(value).strip().partition(":")
    if not (
        sep
        and hours.isdigit()
        and minutes.isdigit()
        and 1 <= len(hours) <= 2
        and len(minutes) == 2
        and int(hours) < 24
        and int(minutes) < 60
    ):
        raise ValueError(f"Expected HH:MM, got '{value}'")
    return time(int(hours), int(minutes))


@dataclass(frozen=True)
class DayHours:
    """Opening hours for one weekday.  ``start`` and ``end`` are inclusive."""

    open: bool
    start: time = time(9, 0)
    end: time = time(17, 0)

    @classmethod
    def parse(cls, raw: Mapping[str, object]) -> DayHours:
        """Build from ``{"open": true, "start": "09:00", "end": "17:00"}``."""
        is_open = bool(raw.get("open", False))
        start = parse_clock(str(raw.get("start", "09:00")))
        end = parse_clock(str(raw.get("end", "17:00")))
        return cls(open=is_open, start=start, end=end)

    def contains(self, moment: time) -> bool:
        return self.open and self.start <= moment <= self.end


def default_week() -> dict[str, DayHours]:
    """Monday to Friday 09:00–17:00, closed at weekends."""
    week = {day: DayHours(open=True) for day in WEEKDAYS[:5]}
    week.update({day: DayHours(open=False) for day in WEEKDAYS[5:]})
    return week


class BusinessHoursCalendar(ABC):
    """Answers whether a business is open at a given moment."""

    @abstractmethod
    def is_open(self, scope: str | None, at: datetime) -> bool:
        """Return ``True`` when ``scope`` is within business hours at ``at``."""


class WeeklyScheduleCalendar(BusinessHoursCalendar):
    """Calendar driven by a weekly schedule in a fixed timezone.

    Parameters
    ----------
    schedule:
        Weekday name → :class:`DayHours`.  Missing days are closed.
    tz_name:
        IANA timezone the schedule is expressed in.
    scope_schedules:
        Per-scope schedules that replace ``schedule`` for that scope.
    """

    def __init__(
        self,
        schedule: Mapping[str, DayHours] | None = None,
        tz_name: str = "UTC",
        scope_schedules: Mapping[str, Mapping[str, DayHours]] | None = None,
    ) -> None:
        self._schedule = dict(schedule) if schedule is not None else default_week()
        self._tz = ZoneInfo(tz_name)
        self._scope_schedules = {k: dict(v) for k, v in (scope_schedules or {}).items()}

    def is_open(self, scope: str | None, at: datetime) -> bool:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        local = at.astimezone(self._tz)
        schedule = self._scope_schedules.get(scope or "", self._schedule)
        day = schedule.get(WEEKDAYS[local.weekday()])
        if day is None:
            return False
        return day.contains(local.time().replace(second=0, microsecond=0))


# ---------------------------------------------------------------------------
# Contact history
# ---------------------------------------------------------------------------


class ContactHistory(ABC):
    """Answers whether a sender has contacted a business before."""

    @abstractmethod
    def has_prior_contact(self, scope: str | None, address: str) -> bool:
        """Return ``True`` when ``address`` is a known contact of ``scope``."""


class InMemoryContactHistory(ContactHistory):
    """Known contacts per scope, compared case-insensitively.

    Contacts registered under the ``None`` scope are known to every scope.
    """

    def __init__(self, contacts: Mapping[str | None, Iterable[str]] | None = None) -> None:
        self._contacts: dict[str | None, set[str]] = {}
        for scope, addresses in (contacts or {}).items():
            for address in addresses:
                self.record(scope, address)

    def record(self, scope: str | None, address: str) -> None:
        self._contacts.setdefault(scope, set()).add(address.strip().lower())

    def has_prior_contact(self, scope: str | None, address: str) -> bool:
        needle = address.strip().lower()
        if not needle:
            return False
        return needle in self._contacts.get(scope, set()) or needle in self._contacts.get(
            None, set()
        )


# ---------------------------------------------------------------------------
# Recipient directory
# ---------------------------------------------------------------------------


class RecipientDirectory(ABC):
    """Looks up who should be asked to decide for a scope."""

    @abstractmethod
    def managers(self, scope: str | None) -> list[str]:
        """Return manager addresses for ``scope`` (possibly empty)."""

    @abstractmethod
    def owner(self, scope: str | None) -> str | None:
        """Return the owner contact for ``scope``, or ``None``."""


class StaticRecipientDirectory(RecipientDirectory):
    """Directory backed by configuration mappings."""

    def __init__(
        self,
        managers: Mapping[str, list[str]] | None = None,
        owners: Mapping[str, str] | None = None,
    ) -> None:
        self._managers = {k: list(v) for k, v in (managers or {}).items()}
        self._owners = dict(owners or {})

    def managers(self, scope: str | None) -> list[str]:
        return list(self._managers.get(scope or "", []))

    def owner(self, scope: str | None) -> str | None:
        return self._owners.get(scope or "")
