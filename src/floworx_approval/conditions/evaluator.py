"""Condition evaluation for auto-approval and automatic-check steps.

Each :class:`~floworx_approval.workflows.definitions.ConditionType` and
:class:`~floworx_approval.workflows.definitions.CheckType` maps to exactly one
handler.  The registries are checked for completeness when the evaluator is
built, so adding an enum member without a handler fails at start-up rather
than silently falling through.

Supported conditions:

- ``low_urgency``      — ``context["classification"]["urgency"]`` equals the
  configured urgency (default ``"low"``)
- ``routine_category`` — ``context["classification"]["category"]`` is one of
  the configured categories (default ``inquiry`` / ``general``)
- ``business_hours``   — the business-hours calendar says the scope is open
- ``known_customer``   — the sender has contacted the scope before
- ``small_amount``     — the first ``$`` amount in the payload text is at or
  below the threshold (default 100); no amount means *false*
- ``standard_request`` — any configured keyword occurs in the payload text

Calls to external collaborators are bounded by ``lookup_timeout_seconds``.
A failing or slow collaborator makes the condition evaluate to ``False``:
an ambiguous signal must never auto-approve an action.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Mapping, TypeVar

from floworx_approval.approval.models import ApprovalRequest, CheckResult
from floworx_approval.conditions.collaborators import (
    BusinessHoursCalendar,
    ContactHistory,
    InMemoryContactHistory,
    WeeklyScheduleCalendar,
)
from floworx_approval.errors import ExternalDependencyError
from floworx_approval.workflows.definitions import CheckType, Condition, ConditionType

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConditionHandler = Callable[[Condition, Mapping[str, object], Mapping[str, object], str | None], bool]
CheckHandler = Callable[[Mapping[str, object], ApprovalRequest], CheckResult]

_AMOUNT_TOKEN = re.compile(r"\$(\d+(?:[,.]\d+)*)")
_AMOUNT_FORMAT = re.compile(r"(\d{1,3}(?:,\d{3})+|\d+)(\.\d{2})?")

DEFAULT_ROUTINE_CATEGORIES: tuple[str, ...] = ("inquiry", "general")
DEFAULT_SMALL_AMOUNT_THRESHOLD = 100.0
DEFAULT_BLOCKED_TERMS: tuple[str, ...] = (
    "lawsuit",
    "legal action",
    "attorney",
    "lawyer",
    "sue",
    "court",
    "discrimination",
    "harassment",
    "threat",
    "violence",
)


def payload_text(action_payload: Mapping[str, object]) -> str:
    """Return the searchable text of a payload: subject, body, then ``text``."""
    parts = [action_payload.get(key) for key in ("subject", "body", "text")]
    return " ".join(str(part) for part in parts if part)


def extract_amount(text: str) -> float | None:
    """Return the first dollar amount in ``text``, or ``None``.

    Thousands separators are accepted (``$1,500.00``).  A first amount that
    is malformed, such as ``$1,50``, yields ``None`` rather than a guess.
    """
    token = _AMOUNT_TOKEN.search(text)
    if token is None:
        return None
    if _AMOUNT_FORMAT.fullmatch(token.group(1)) is None:
        logger.debug("Ignoring malformed amount %r", token.group(0))
        return None
    return float(token.group(1).replace(",", ""))


def _classification(context: Mapping[str, object]) -> Mapping[str, object]:
    value = context.get("classification")
    return value if isinstance(value, Mapping) else {}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _assert_exhaustive(kind: type[Enum], registry: Mapping[Enum, object]) -> None:
    missing = [member.value for member in kind if member not in registry]
    if missing:
        raise TypeError(f"No handler registered for {kind.__name__} value(s): {missing}")


class ConditionEvaluator:
    """Evaluates auto-approve conditions and automatic checks.

    Parameters
    ----------
    calendar:
        Business-hours collaborator.  Defaults to a Monday–Friday
        09:00–17:00 UTC schedule.
    contacts:
        Prior-contact collaborator.  Defaults to an empty history.
    lookup_timeout_seconds:
        Upper bound on each collaborator call.
    clock:
        Returns the current UTC datetime.  Override in tests.
    """

    def __init__(
        self,
        calendar: BusinessHoursCalendar | None = None,
        contacts: ContactHistory | None = None,
        lookup_timeout_seconds: float = 2.0,
        clock: Callable[[], datetime] | None = None,
        max_workers: int = 4,
    ) -> None:
        self._calendar = calendar or WeeklyScheduleCalendar()
        self._contacts = contacts or InMemoryContactHistory()
        self._lookup_timeout = lookup_timeout_seconds
        self._clock = clock or _utcnow
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="approval-lookup"
        )
        self._conditions: dict[ConditionType, ConditionHandler] = {
            ConditionType.LOW_URGENCY: self._low_urgency,
            ConditionType.ROUTINE_CATEGORY: self._routine_category,
            ConditionType.BUSINESS_HOURS: self._business_hours,
            ConditionType.KNOWN_CUSTOMER: self._known_customer,
            ConditionType.SMALL_AMOUNT: self._small_amount,
            ConditionType.STANDARD_REQUEST: self._standard_request,
        }
        self._checks: dict[CheckType, CheckHandler] = {
            CheckType.BUSINESS_HOURS: self._check_business_hours,
            CheckType.CUSTOMER_HISTORY: self._check_customer_history,
            CheckType.CONTENT_FILTER: self._check_content_filter,
        }
        _assert_exhaustive(ConditionType, self._conditions)
        _assert_exhaustive(CheckType, self._checks)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def evaluate(
        self,
        condition: Condition,
        action_payload: Mapping[str, object],
        context: Mapping[str, object],
        scope: str | None = None,
    ) -> bool:
        """Return whether ``condition`` holds for this payload and context.

        Never raises for collaborator failures; those evaluate to ``False``.
        """
        handler = self._conditions[condition.type]
        try:
            result = handler(condition, action_payload, context, scope)
        except ExternalDependencyError as exc:
            logger.warning(
                "Condition %s evaluated false after lookup failure: %s",
                condition.type.value,
                exc,
            )
            return False
        logger.debug("Condition %s -> %s", condition.type.value, result)
        return result

    def should_auto_approve(
        self,
        conditions: Iterable[Condition],
        action_payload: Mapping[str, object],
        context: Mapping[str, object],
        scope: str | None = None,
    ) -> Condition | None:
        """Return the first condition that holds, or ``None``.

        Any single true condition is enough (OR semantics).  An empty
        condition list never auto-approves.
        """
        for condition in conditions:
            if self.evaluate(condition, action_payload, context, scope):
                logger.info("Auto-approve condition met: %s", condition.type.value)
                return condition
        return None

    # ------------------------------------------------------------------
    # Automatic checks
    # ------------------------------------------------------------------

    def run_check(self, check: object, request: ApprovalRequest) -> CheckResult:
        """Run one automatic check against a request.

        ``check`` is either a check-type string or a mapping with ``type``
        and optional ``parameters``.  Lookup failures count as a failed check.
        """
        if isinstance(check, Mapping):
            check_type = CheckType(check["type"])
            params = check.get("parameters") or {}
        else:
            check_type = CheckType(str(check))
            params = {}
        try:
            return self._checks[check_type](params, request)  # type: ignore[arg-type]
        except ExternalDependencyError as exc:
            logger.warning("Check %s failed closed: %s", check_type.value, exc)
            return CheckResult(check_type.value, False, f"Lookup failed: {exc}")

    def close(self) -> None:
        """Release the lookup worker threads."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Condition handlers
    # ------------------------------------------------------------------

    def _low_urgency(self, condition, action_payload, context, scope) -> bool:
        expected = str(condition.parameters.get("urgency", "low"))
        return _classification(context).get("urgency") == expected

    def _routine_category(self, condition, action_payload, context, scope) -> bool:
        categories = condition.parameters.get("categories") or DEFAULT_ROUTINE_CATEGORIES
        return _classification(context).get("category") in set(categories)  # type: ignore[arg-type]

    def _business_hours(self, condition, action_payload, context, scope) -> bool:
        target = condition.parameters.get("scope", scope)
        return self._lookup(
            "business_hours", lambda: self._calendar.is_open(target, self._clock())  # type: ignore[arg-type]
        )

    def _known_customer(self, condition, action_payload, context, scope) -> bool:
        sender = str(action_payload.get("from") or "")
        if not sender:
            return False
        target = condition.parameters.get("scope", scope)
        return self._lookup(
            "contact_history", lambda: self._contacts.has_prior_contact(target, sender)  # type: ignore[arg-type]
        )

    def _small_amount(self, condition, action_payload, context, scope) -> bool:
        threshold = float(condition.parameters.get("threshold", DEFAULT_SMALL_AMOUNT_THRESHOLD))  # type: ignore[arg-type]
        amount = extract_amount(payload_text(action_payload).lower())
        if amount is None:
            return False
        return amount <= threshold

    def _standard_request(self, condition, action_payload, context, scope) -> bool:
        keywords = condition.parameters.get("keywords") or []
        text = payload_text(action_payload).lower()
        return any(str(keyword).lower() in text for keyword in keywords)  # type: ignore[union-attr]

    # ------------------------------------------------------------------
    # Check handlers
    # ------------------------------------------------------------------

    def _check_business_hours(self, params, request) -> CheckResult:
        is_open = self._lookup(
            "business_hours", lambda: self._calendar.is_open(request.scope, self._clock())
        )
        message = "Within business hours" if is_open else "Outside business hours"
        return CheckResult(CheckType.BUSINESS_HOURS.value, is_open, message)

    def _check_customer_history(self, params, request) -> CheckResult:
        sender = str(request.action_payload.get("from") or "")
        known = bool(sender) and self._lookup(
            "contact_history", lambda: self._contacts.has_prior_contact(request.scope, sender)
        )
        message = "Known customer" if known else "New or unknown customer"
        return CheckResult(CheckType.CUSTOMER_HISTORY.value, known, message)

    def _check_content_filter(self, params, request) -> CheckResult:
        terms = params.get("blocked_terms") or DEFAULT_BLOCKED_TERMS
        text = payload_text(request.action_payload).lower()
        hits = [term for term in terms if str(term).lower() in text]
        if hits:
            return CheckResult(
                CheckType.CONTENT_FILTER.value, False, f"Content needs review: {', '.join(hits)}"
            )
        return CheckResult(CheckType.CONTENT_FILTER.value, True, "Content is appropriate")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lookup(self, dependency: str, call: Callable[[], T]) -> T:
        """Run a collaborator call with a timeout, wrapping any failure."""
        future = self._executor.submit(call)
        try:
            return future.result(timeout=self._lookup_timeout)
        except FutureTimeoutError:
            future.cancel()
            raise ExternalDependencyError(
                dependency, f"timed out after {self._lookup_timeout:.1f}s"
            ) from None
        except Exception as exc:
            raise ExternalDependencyError(dependency, str(exc) or type(exc).__name__) from exc
