"""Feature flag data model.

All definition records are frozen: a flag is never edited in place, a new
record is built with ``dataclasses.replace`` and swapped into the registry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flagengine.core.errors import FlagValidationError, UnknownOperatorError
from flagengine.core.feature_flags.values import FlagType, ensure_utc, snapshot_value, to_timestamp


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Operator(str, Enum):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    BEFORE = "before"
    AFTER = "after"


class RolloutType(str, Enum):
    PERCENTAGE = "percentage"
    SCHEDULED = "scheduled"
    GRADUAL = "gradual"


class OverrideType(str, Enum):
    USER = "user"
    GROUP = "group"


class EvaluationReason(str, Enum):
    """Which evaluation stage decided the result."""
    DISABLED = "disabled"
    OUTSIDE_SCHEDULE = "outside_schedule"
    DEPENDENCY_NOT_MET = "dependency_not_met"
    OVERRIDE = "override"
    ENVIRONMENT = "environment"
    RULE_MATCH = "rule_match"
    VARIANT = "variant"
    ROLLOUT = "rollout"
    DEFAULT = "default"


def _check_percentage(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FlagValidationError(f"percentage must be a number, got {value!r}")
    if not 0 <= value <= 100:
        raise FlagValidationError("percentage must be between 0 and 100")
    return value


def _optional_timestamp(value: Any, name: str) -> Optional[datetime]:
    if value is None:
        return None
    moment = to_timestamp(value)
    if moment is None:
        raise FlagValidationError(f"{name} is not a valid timestamp: {value!r}")
    return moment


@dataclass(frozen=True)
class Condition:
    """A single property comparison."""
    property: str
    operator: Operator
    value: Any = None

    def __post_init__(self):
        try:
            operator = Operator(self.operator)
        except ValueError:
            raise UnknownOperatorError(self.operator) from None
        object.__setattr__(self, "operator", operator)
        if not self.property:
            raise FlagValidationError("condition property is required")
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    def to_dict(self) -> Dict[str, Any]:
        value = list(self.value) if isinstance(self.value, (tuple, set, frozenset)) else self.value
        if isinstance(value, datetime):
            value = value.isoformat()
        return {"property": self.property, "operator": self.operator.value, "value": value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        return cls(property=data["property"], operator=data["operator"], value=data.get("value"))


@dataclass(frozen=True)
class TargetingRule:
    """Conditions (AND-combined) that select ``value`` when all hold."""
    conditions: Tuple[Condition, ...]
    value: Any
    priority: int = 0
    enabled: bool = True
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "enabled": self.enabled,
            "conditions": [c.to_dict() for c in self.conditions],
            "value": snapshot_value(self.value),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TargetingRule":
        return cls(
            id=data.get("id") or _new_id(),
            priority=data.get("priority", 0),
            enabled=data.get("enabled", True),
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            value=data.get("value"),
        )


@dataclass(frozen=True)
class Variant:
    """A weighted alternative value."""
    key: str
    value: Any
    weight: int = 0
    name: str = ""

    def __post_init__(self):
        if not self.key:
            raise FlagValidationError("variant key is required")
        if isinstance(self.weight, bool) or not isinstance(self.weight, int) or self.weight < 0:
            raise FlagValidationError(f"variant weight must be a non-negative integer: {self.weight!r}")
        if not self.name:
            object.__setattr__(self, "name", self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "value": snapshot_value(self.value),
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Variant":
        return cls(
            key=data["key"],
            value=data.get("value"),
            weight=data.get("weight", 0),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class GradualStep:
    """From ``date`` on, ``percentage`` of subjects are in the rollout."""
    date: datetime
    percentage: float

    def __post_init__(self):
        object.__setattr__(self, "date", _optional_timestamp(self.date, "gradual step date"))
        if self.date is None:
            raise FlagValidationError("gradual step date is required")
        _check_percentage(self.percentage)


@dataclass(frozen=True)
class RolloutStrategy:
    """Percentage, scheduled or gradual gate for boolean flags."""
    type: RolloutType
    percentage: float = 0
    sticky: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    steps: Tuple[GradualStep, ...] = ()

    def __post_init__(self):
        try:
            object.__setattr__(self, "type", RolloutType(self.type))
        except ValueError:
            raise FlagValidationError(f"unknown rollout type: {self.type!r}") from None
        _check_percentage(self.percentage)
        object.__setattr__(self, "start_date", _optional_timestamp(self.start_date, "start_date"))
        object.__setattr__(self, "end_date", _optional_timestamp(self.end_date, "end_date"))
        object.__setattr__(self, "steps", tuple(self.steps))
        if self.type is RolloutType.GRADUAL and not self.steps:
            raise FlagValidationError("gradual rollout needs at least one step")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "percentage": self.percentage,
            "sticky": self.sticky,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "steps": [
                {"date": s.date.isoformat(), "percentage": s.percentage} for s in self.steps
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RolloutStrategy":
        return cls(
            type=data["type"],
            percentage=data.get("percentage", 0),
            sticky=data.get("sticky", True),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            steps=tuple(
                GradualStep(date=s["date"], percentage=s["percentage"])
                for s in data.get("steps", [])
            ),
        )


@dataclass(frozen=True)
class Schedule:
    """Active window for a flag.

    ``start``/``end`` bound the absolute window (either may be open).
    ``days_of_week`` (0=Monday) and ``daily_start``/``daily_end`` restrict it
    further, interpreted in ``timezone``. A daily window whose start is after
    its end wraps past midnight.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    days_of_week: FrozenSet[int] = frozenset()
    daily_start: Optional[time] = None
    daily_end: Optional[time] = None
    timezone: str = "UTC"

    def __post_init__(self):
        object.__setattr__(self, "start", _optional_timestamp(self.start, "schedule start"))
        object.__setattr__(self, "end", _optional_timestamp(self.end, "schedule end"))
        if self.start and self.end and self.start > self.end:
            raise FlagValidationError("schedule start must not be after its end")
        days = frozenset(self.days_of_week or ())
        if any(isinstance(d, bool) or not isinstance(d, int) or not 0 <= d <= 6 for d in days):
            raise FlagValidationError("days_of_week must contain integers 0..6")
        object.__setattr__(self, "days_of_week", days)
        for name in ("daily_start", "daily_end"):
            value = getattr(self, name)
            if isinstance(value, str):
                try:
                    object.__setattr__(self, name, time.fromisoformat(value))
                except ValueError:
                    raise FlagValidationError(f"{name} is not a valid time: {value!r}") from None
            value = getattr(self, name)
            if value is not None and not isinstance(value, time):
                raise FlagValidationError(f"{name} must be a time of day: {value!r}")
            # Daily bounds are wall-clock times in ``timezone``
            if value is not None and value.tzinfo is not None:
                raise FlagValidationError(
                    f"{name} must not carry a UTC offset; set the schedule timezone instead"
                )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise FlagValidationError(f"unknown timezone: {self.timezone!r}") from None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "days_of_week": sorted(self.days_of_week),
            "daily_start": self.daily_start.isoformat() if self.daily_start else None,
            "daily_end": self.daily_end.isoformat() if self.daily_end else None,
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Schedule":
        return cls(
            start=data.get("start"),
            end=data.get("end"),
            days_of_week=frozenset(data.get("days_of_week") or ()),
            daily_start=data.get("daily_start"),
            daily_end=data.get("daily_end"),
            timezone=data.get("timezone", "UTC"),
        )


@dataclass(frozen=True)
class Override:
    """Forced value for one subject or group."""
    target: str
    value: Any
    target_type: OverrideType = OverrideType.USER
    reason: str = ""
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.target:
            raise FlagValidationError("override target is required")
        try:
            object.__setattr__(self, "target_type", OverrideType(self.target_type))
        except ValueError:
            raise FlagValidationError(f"unknown override type: {self.target_type!r}") from None
        object.__setattr__(self, "expires_at", _optional_timestamp(self.expires_at, "expires_at"))

    def is_active(self, at: datetime) -> bool:
        return self.expires_at is None or ensure_utc(at) < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "target_type": self.target_type.value,
            "value": snapshot_value(self.value),
            "reason": self.reason,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Override":
        return cls(
            target=data["target"],
            value=data.get("value"),
            target_type=data.get("target_type", OverrideType.USER),
            reason=data.get("reason", ""),
            expires_at=data.get("expires_at"),
            created_at=to_timestamp(data.get("created_at")) or _utcnow(),
        )


@dataclass(frozen=True)
class Flag:
    """A feature flag definition."""
    key: str
    flag_type: FlagType
    default_value: Any
    name: str = ""
    description: str = ""
    enabled: bool = True
    rules: Tuple[TargetingRule, ...] = ()
    variants: Tuple[Variant, ...] = ()
    rollout: Optional[RolloutStrategy] = None
    schedule: Optional[Schedule] = None
    dependencies: Tuple[str, ...] = ()
    overrides: Tuple[Override, ...] = ()
    environments: FrozenSet[str] = frozenset()
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        try:
            object.__setattr__(self, "flag_type", FlagType(self.flag_type))
        except ValueError:
            raise FlagValidationError(f"invalid flag type: {self.flag_type!r}") from None
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "variants", tuple(self.variants))
        # Ordered, de-duplicated
        object.__setattr__(self, "dependencies", tuple(dict.fromkeys(self.dependencies)))
        object.__setattr__(self, "overrides", tuple(self.overrides))
        object.__setattr__(self, "environments", frozenset(self.environments))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "type": self.flag_type.value,
            "default_value": snapshot_value(self.default_value),
            "enabled": self.enabled,
            "rules": [r.to_dict() for r in self.rules],
            "variants": [v.to_dict() for v in self.variants],
            "rollout": self.rollout.to_dict() if self.rollout else None,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "dependencies": list(self.dependencies),
            "overrides": [o.to_dict() for o in self.overrides],
            "environments": sorted(self.environments),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Flag":
        """Create from dictionary."""
        default_value = data.get("default_value")
        flag_type = data.get("type") or FlagType.infer(default_value)
        return cls(
            id=data.get("id") or _new_id(),
            key=data["key"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            flag_type=flag_type,
            default_value=default_value,
            enabled=data.get("enabled", True),
            rules=tuple(TargetingRule.from_dict(r) for r in data.get("rules", [])),
            variants=tuple(Variant.from_dict(v) for v in data.get("variants", [])),
            rollout=RolloutStrategy.from_dict(data["rollout"]) if data.get("rollout") else None,
            schedule=Schedule.from_dict(data["schedule"]) if data.get("schedule") else None,
            dependencies=tuple(data.get("dependencies", [])),
            overrides=tuple(Override.from_dict(o) for o in data.get("overrides", [])),
            environments=frozenset(data.get("environments", [])),
            created_at=to_timestamp(data.get("created_at")) or _utcnow(),
            updated_at=to_timestamp(data.get("updated_at")) or _utcnow(),
        )


def validate_flag(flag: Flag) -> None:
    """Reject definitions that must never enter the registry."""
    if not isinstance(flag.key, str) or not flag.key.strip():
        raise FlagValidationError("flag key is required")
    if flag.default_value is None:
        raise FlagValidationError(f"flag {flag.key} needs a default value")
    if flag.key in flag.dependencies:
        raise FlagValidationError(f"flag {flag.key} cannot depend on itself")


@dataclass(frozen=True)
class EvaluationContext:
    """Per-call input to an evaluation."""
    subject_id: str = ""
    properties: Mapping[str, Any] = field(default_factory=dict)
    group_ids: FrozenSet[str] = frozenset()
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "properties", dict(self.properties or {}))
        object.__setattr__(self, "group_ids", frozenset(self.group_ids or ()))
        moment = self.timestamp if self.timestamp is not None else _utcnow()
        object.__setattr__(self, "timestamp", ensure_utc(moment))

    def with_property(self, name: str, value: Any) -> "EvaluationContext":
        properties = dict(self.properties)
        properties[name] = value
        return EvaluationContext(
            subject_id=self.subject_id,
            properties=properties,
            group_ids=self.group_ids,
            timestamp=self.timestamp,
        )


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one evaluation."""
    flag_key: str
    value: Any
    reason: EvaluationReason
    rule_id: Optional[str] = None
    variant_key: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "value": snapshot_value(self.value),
            "reason": self.reason.value,
            "rule_id": self.rule_id,
            "variant_key": self.variant_key,
            "timestamp": self.timestamp.isoformat(),
        }
