"""Engine configuration loader with Pydantic v2 validation.

Loads and validates an ``approvals.yaml`` file into a typed
:class:`EngineConfig` object.  Unknown keys are allowed to support future
schema additions without breakage.

Example
-------
>>> loader = ConfigLoader()
>>> config = loader.load(Path("approvals.yaml"))
>>> config.engine.timeout_policy
<TimeoutPolicy.TIMEOUT: 'timeout'>
"""
from __future__ import annotations

from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator

from floworx_approval.approval.models import TimeoutPolicy
from floworx_approval.conditions.collaborators import WEEKDAYS, DayHours, parse_clock
from floworx_approval.workflows.definitions import WorkflowDefinition


class EngineSettings(BaseModel):
    """Core engine behaviour."""

    model_config = {"extra": "allow"}

    default_timeout_hours: float = Field(default=24.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    timeout_policy: TimeoutPolicy = Field(default=TimeoutPolicy.TIMEOUT)
    lookup_timeout_seconds: float = Field(default=2.0, gt=0)


class NotificationConfig(BaseModel):
    """Where approval notifications go."""

    model_config = {"extra": "allow"}

    app_url: str = Field(default="https://app.floworx-iq.com")
    webhook_url: str | None = Field(default=None)
    webhook_format: Literal["slack", "teams", "generic"] = Field(default="generic")
    timeout_seconds: float = Field(default=5.0, gt=0)


class DayHoursConfig(BaseModel):
    """Opening hours for one weekday."""

    open: bool = False
    start: str = "09:00"
    end: str = "17:00"

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        return parse_clock(value).strftime("%H:%M")

    def to_day_hours(self) -> DayHours:
        return DayHours.parse(self.model_dump())


def _check_weekdays(schedule: dict[str, DayHoursConfig], scope: str | None = None) -> None:
    where = f" in scope '{scope}'" if scope else ""
    for day in schedule:
        if day not in WEEKDAYS:
            raise ValueError(f"Unknown weekday '{day}'{where}. Valid: {list(WEEKDAYS)}")


def _default_schedule() -> dict[str, DayHoursConfig]:
    schedule = {day: DayHoursConfig(open=True) for day in WEEKDAYS[:5]}
    schedule.update({day: DayHoursConfig(open=False) for day in WEEKDAYS[5:]})
    return schedule


class BusinessHoursConfig(BaseModel):
    """Weekly schedule used by ``business_hours`` conditions and checks."""

    model_config = {"extra": "allow"}

    timezone: str = Field(default="America/New_York")
    schedule: dict[str, DayHoursConfig] = Field(default_factory=_default_schedule)
    scopes: dict[str, dict[str, DayHoursConfig]] = Field(default_factory=dict)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ValueError, ZoneInfoNotFoundError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @field_validator("schedule")
    @classmethod
    def validate_weekdays(cls, values: dict[str, DayHoursConfig]) -> dict[str, DayHoursConfig]:
        _check_weekdays(values)
        return values

    @field_validator("scopes")
    @classmethod
    def validate_scope_weekdays(
        cls, values: dict[str, dict[str, DayHoursConfig]]
    ) -> dict[str, dict[str, DayHoursConfig]]:
        for scope, schedule in values.items():
            _check_weekdays(schedule, scope)
        return values

    def week(self, scope: str | None = None) -> dict[str, DayHours]:
        source = self.scopes.get(scope, self.schedule) if scope else self.schedule
        return {day: hours.to_day_hours() for day, hours in source.items()}


class RecipientsConfig(BaseModel):
    """Who gets asked to decide, per scope."""

    model_config = {"extra": "allow"}

    managers: dict[str, list[str]] = Field(default_factory=dict)
    owners: dict[str, str] = Field(default_factory=dict)


class StoreConfig(BaseModel):
    """Request persistence.  No path means an in-memory store."""

    model_config = {"extra": "allow"}

    path: Path | None = Field(default=None)


class AuditConfig(BaseModel):
    """Audit trail.  No path disables it."""

    model_config = {"extra": "allow"}

    log_path: Path | None = Field(default=None)


class EngineConfig(BaseModel):
    """Top-level approval engine configuration schema.

    Loaded from ``approvals.yaml``.  All sections are optional and fall back
    to sensible defaults.
    """

    model_config = {"extra": "allow"}

    version: str = Field(default="1")
    engine: EngineSettings = Field(default_factory=EngineSettings)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    recipients: RecipientsConfig = Field(default_factory=RecipientsConfig)
    known_contacts: dict[str, list[str]] = Field(default_factory=dict)
    store: StoreConfig = Field(default_factory=StoreConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    workflows: list[WorkflowDefinition] = Field(default_factory=list)

    @field_validator("workflows")
    @classmethod
    def unique_workflow_ids(cls, values: list[WorkflowDefinition]) -> list[WorkflowDefinition]:
        seen: set[str] = set()
        for workflow in values:
            if workflow.id in seen:
                raise ValueError(f"Duplicate workflow id '{workflow.id}'")
            seen.add(workflow.id)
        return values


class ConfigLoader:
    """Loads and validates approval engine YAML configuration.

    Example
    -------
    >>> loader = ConfigLoader()
    >>> config = loader.load(Path("approvals.yaml"))
    """

    def load(self, config_path: Path) -> EngineConfig:
        """Load and validate an engine YAML file.

        Parameters
        ----------
        config_path:
            Path to the ``approvals.yaml`` file.

        Returns
        -------
        EngineConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError:
            When the config file does not exist.
        ValueError:
            When the YAML content fails Pydantic validation.
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Approval engine config not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            raw: dict[str, object] = yaml.safe_load(fh) or {}

        return EngineConfig.model_validate(raw)

    def load_string(self, yaml_content: str) -> EngineConfig:
        """Load and validate a YAML string directly."""
        raw: dict[str, object] = yaml.safe_load(yaml_content) or {}
        return EngineConfig.model_validate(raw)

    def defaults(self) -> EngineConfig:
        """Return a default configuration with all defaults applied."""
        return EngineConfig()
