"""Feature flag service.

High-level operations used by the surrounding application: flag CRUD,
targeting, rollout and variant configuration, overrides, environment
enablement, evaluation and change history. Every mutation validates first,
swaps a new flag snapshot into the registry, stamps ``updated_at`` and
appends a history entry.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from flagengine.core.config import get_settings
from flagengine.core.errors import (
    FlagNotFoundError,
    FlagValidationError,
    InvalidDependencyError,
    OverrideNotFoundError,
    RuleNotFoundError,
)
from flagengine.core.feature_flags.evaluator import ENVIRONMENT_PROPERTY, FlagEvaluator
from flagengine.core.feature_flags.history import ChangeAction, ChangeHistory, HistoryEntry
from flagengine.core.feature_flags.models import (
    Condition,
    EvaluationContext,
    EvaluationResult,
    Flag,
    GradualStep,
    Operator,
    Override,
    OverrideType,
    RolloutStrategy,
    RolloutType,
    Schedule,
    TargetingRule,
    Variant,
)
from flagengine.core.feature_flags.registry import FlagRegistry
from flagengine.core.feature_flags.values import FlagType, snapshot_value
from flagengine.utils.metrics import record_evaluation, record_mutation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_default(key: str, flag_type: FlagType, default_value: Any) -> None:
    """A default must be present and, except for json flags, match the flag type."""
    if default_value is None:
        raise FlagValidationError(f"flag {key} needs a default value")
    if flag_type is not FlagType.JSON and FlagType.infer(default_value) is not flag_type:
        raise FlagValidationError(f"default value for {key} must be {flag_type.value}")


@dataclass
class EvaluationMetrics:
    """In-process counters for one flag."""
    flag_key: str
    total_evaluations: int = 0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    variant_counts: Dict[str, int] = field(default_factory=dict)
    last_evaluation: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "total_evaluations": self.total_evaluations,
            "reason_counts": dict(self.reason_counts),
            "variant_counts": dict(self.variant_counts),
            "last_evaluation": self.last_evaluation.isoformat() if self.last_evaluation else None,
        }


@dataclass(frozen=True)
class ExperimentVariant:
    """Input shape for ``create_experiment``."""
    name: str
    value: Any
    weight: int


class FeatureFlagService:
    """Flag management and evaluation entry point."""

    def __init__(
        self,
        registry: Optional[FlagRegistry] = None,
        history: Optional[ChangeHistory] = None,
        evaluator: Optional[FlagEvaluator] = None,
    ):
        self.registry = registry if registry is not None else FlagRegistry()
        self.history = history if history is not None else ChangeHistory()
        self.evaluator = evaluator if evaluator is not None else FlagEvaluator(self.registry)
        self._metrics: Dict[str, EvaluationMetrics] = {}
        self._metrics_lock = threading.Lock()
        # Registry writes and their history entries are applied together
        self._mutation_lock = threading.Lock()

    # Flag lifecycle

    def create_flag(
        self,
        key: str,
        name: str,
        description: str,
        default_value: Any,
        flag_type: Optional[FlagType] = None,
    ) -> Flag:
        """Create a flag; the type is inferred from the default unless given."""
        if not isinstance(key, str) or not key.strip():
            raise FlagValidationError("flag key is required")
        try:
            flag_type = FlagType(flag_type) if flag_type is not None else FlagType.infer(default_value)
        except ValueError:
            raise FlagValidationError(f"invalid flag type: {flag_type!r}") from None
        _check_default(key, flag_type, default_value)
        flag = Flag(
            key=key,
            name=name,
            description=description,
            flag_type=flag_type,
            default_value=snapshot_value(default_value),
        )
        with self._mutation_lock:
            self.registry.add(flag)
            self._record(key, ChangeAction.CREATED, None, flag, timestamp=flag.created_at)
        logger.info(f"Created flag {key} ({flag.flag_type.value})", extra={"flag_key": key})
        return flag

    def create_string_flag(self, key: str, name: str, description: str, default_value: str) -> Flag:
        return self.create_flag(key, name, description, default_value, FlagType.STRING)

    def create_json_flag(self, key: str, name: str, description: str, default_value: Any) -> Flag:
        return self.create_flag(key, name, description, default_value, FlagType.JSON)

    def get_flag(self, key: str) -> Flag:
        return self.registry.require(key)

    def list_flags(self) -> List[Flag]:
        return self.registry.list_flags()

    def update_flag(self, key: str, name: str, description: str, default_value: Any) -> Flag:
        """Replace a flag's descriptive fields and default value.

        The flag type is fixed at creation: a default of a different shape is
        rejected unless the flag is a json flag.
        """
        default_value = snapshot_value(default_value)

        def change(flag: Flag) -> Flag:
            _check_default(key, flag.flag_type, default_value)
            return dataclasses.replace(
                flag, name=name, description=description, default_value=default_value
            )

        return self._mutate(key, change, "definition")

    def delete_flag(self, key: str) -> None:
        with self._mutation_lock:
            removed = self.registry.remove(key)
            self._record(key, ChangeAction.DELETED, removed, None)
        with self._metrics_lock:
            self._metrics.pop(key, None)
        logger.info(f"Deleted flag {key}", extra={"flag_key": key})

    def enable_flag(self, key: str) -> Flag:
        return self._mutate(key, lambda f: dataclasses.replace(f, enabled=True), "enabled")

    def disable_flag(self, key: str) -> Flag:
        return self._mutate(key, lambda f: dataclasses.replace(f, enabled=False), "disabled")

    # Targeting

    def add_targeting_rule(
        self,
        key: str,
        conditions: Sequence[Condition | Mapping[str, Any]],
        value: Any,
        priority: Optional[int] = None,
        enabled: bool = True,
    ) -> TargetingRule:
        """Append a rule. Without a priority it goes after existing rules."""
        parsed = tuple(
            c if isinstance(c, Condition) else Condition.from_dict(c) for c in conditions
        )
        holder: Dict[str, TargetingRule] = {}

        def change(flag: Flag) -> Flag:
            rule = TargetingRule(
                conditions=parsed,
                value=value,
                priority=len(flag.rules) + 1 if priority is None else priority,
                enabled=enabled,
            )
            holder["rule"] = rule
            return dataclasses.replace(flag, rules=flag.rules + (rule,))

        self._mutate(key, change, "rule_added")
        return holder["rule"]

    def add_property_rule(
        self,
        key: str,
        property: str,
        operator: Operator | str,
        value: Any,
        result: Any,
    ) -> TargetingRule:
        """Single-condition rule appended after existing rules."""
        condition = Condition(property=property, operator=operator, value=value)
        return self.add_targeting_rule(key, [condition], result)

    def add_user_to_flag(self, key: str, subject_id: str) -> TargetingRule:
        """Target one subject with ``True`` ahead of every other rule."""
        rule = TargetingRule(
            conditions=(Condition(property="subject_id", operator=Operator.EQUALS, value=subject_id),),
            value=True,
            priority=0,
        )
        self._mutate(key, lambda f: dataclasses.replace(f, rules=(rule,) + f.rules), "user_targeted")
        return rule

    def remove_rule(self, key: str, rule_id: str) -> Flag:
        def change(flag: Flag) -> Flag:
            remaining = tuple(r for r in flag.rules if r.id != rule_id)
            if len(remaining) == len(flag.rules):
                raise RuleNotFoundError(key, rule_id)
            return dataclasses.replace(flag, rules=remaining)

        return self._mutate(key, change, "rule_removed")

    # Variants

    def add_variant(self, key: str, variant_key: str, value: Any, weight: int) -> Variant:
        variant = Variant(key=variant_key, value=value, weight=weight)

        def change(flag: Flag) -> Flag:
            if any(v.key == variant_key for v in flag.variants):
                raise FlagValidationError(f"variant {variant_key} already exists on {key}")
            return dataclasses.replace(flag, variants=flag.variants + (variant,))

        self._mutate(key, change, "variant_added")
        return variant

    def create_experiment(self, key: str, variants: Iterable[ExperimentVariant]) -> Flag:
        """Replace the flag's variants with the experiment's arms."""
        arms = tuple(Variant(key=v.name, value=v.value, weight=v.weight) for v in variants)
        if len({v.key for v in arms}) != len(arms):
            raise FlagValidationError(f"experiment variants on {key} must have unique names")
        return self._mutate(key, lambda f: dataclasses.replace(f, variants=arms), "experiment_created")

    # Rollout and schedule

    def set_percentage_rollout(self, key: str, percentage: float, sticky: bool = True) -> Flag:
        strategy = RolloutStrategy(type=RolloutType.PERCENTAGE, percentage=percentage, sticky=sticky)
        return self._mutate(key, lambda f: dataclasses.replace(f, rollout=strategy), "rollout_percentage")

    def set_scheduled_rollout(
        self,
        key: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Flag:
        strategy = RolloutStrategy(
            type=RolloutType.SCHEDULED, start_date=start_date, end_date=end_date
        )
        return self._mutate(key, lambda f: dataclasses.replace(f, rollout=strategy), "rollout_scheduled")

    def set_gradual_rollout(self, key: str, steps: Iterable[GradualStep]) -> Flag:
        strategy = RolloutStrategy(type=RolloutType.GRADUAL, steps=tuple(steps))
        return self._mutate(key, lambda f: dataclasses.replace(f, rollout=strategy), "rollout_gradual")

    def clear_rollout(self, key: str) -> Flag:
        return self._mutate(key, lambda f: dataclasses.replace(f, rollout=None), "rollout_cleared")

    def set_schedule(
        self,
        key: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        days_of_week: Optional[Iterable[int]] = None,
        daily_start=None,
        daily_end=None,
        timezone: str = "UTC",
    ) -> Flag:
        schedule = Schedule(
            start=start,
            end=end,
            days_of_week=frozenset(days_of_week or ()),
            daily_start=daily_start,
            daily_end=daily_end,
            timezone=timezone,
        )
        return self._mutate(key, lambda f: dataclasses.replace(f, schedule=schedule), "schedule_set")

    def clear_schedule(self, key: str) -> Flag:
        return self._mutate(key, lambda f: dataclasses.replace(f, schedule=None), "schedule_cleared")

    # Dependencies

    def add_dependency(self, key: str, depends_on: str) -> Flag:
        if depends_on == key:
            raise InvalidDependencyError(f"flag {key} cannot depend on itself")
        if depends_on not in self.registry:
            raise FlagNotFoundError(depends_on)
        return self._mutate(
            key,
            lambda f: dataclasses.replace(f, dependencies=f.dependencies + (depends_on,)),
            "dependency_added",
        )

    def remove_dependency(self, key: str, depends_on: str) -> Flag:
        def change(flag: Flag) -> Flag:
            if depends_on not in flag.dependencies:
                raise InvalidDependencyError(f"flag {key} does not depend on {depends_on}")
            return dataclasses.replace(
                flag, dependencies=tuple(d for d in flag.dependencies if d != depends_on)
            )

        return self._mutate(key, change, "dependency_removed")

    # Overrides

    def create_override(
        self,
        key: str,
        target: str,
        value: Any,
        reason: str = "",
        override_type: OverrideType | str = OverrideType.USER,
        expires_at: Optional[datetime] = None,
    ) -> Override:
        """Force ``value`` for a subject or group; replaces an existing one."""
        override = Override(
            target=target,
            value=value,
            target_type=override_type,
            reason=reason,
            expires_at=expires_at,
        )

        def change(flag: Flag) -> Flag:
            kept = tuple(
                o for o in flag.overrides
                if not (o.target == override.target and o.target_type is override.target_type)
            )
            return dataclasses.replace(flag, overrides=kept + (override,))

        self._mutate(key, change, "override_set")
        return override

    def remove_override(
        self,
        key: str,
        target: str,
        override_type: OverrideType | str = OverrideType.USER,
    ) -> Flag:
        target_type = OverrideType(override_type)

        def change(flag: Flag) -> Flag:
            kept = tuple(
                o for o in flag.overrides
                if not (o.target == target and o.target_type is target_type)
            )
            if len(kept) == len(flag.overrides):
                raise OverrideNotFoundError(key, target)
            return dataclasses.replace(flag, overrides=kept)

        return self._mutate(key, change, "override_removed")

    # Environments

    def enable_for_environment(self, key: str, environment: str) -> Flag:
        if not environment:
            raise FlagValidationError("environment name is required")
        return self._mutate(
            key,
            lambda f: dataclasses.replace(f, environments=f.environments | {environment}),
            f"environment_enabled:{environment}",
        )

    def disable_for_environment(self, key: str, environment: str) -> Flag:
        return self._mutate(
            key,
            lambda f: dataclasses.replace(f, environments=f.environments - {environment}),
            f"environment_disabled:{environment}",
        )

    # Evaluation

    def evaluate(
        self,
        key: str,
        subject_id: str = "",
        properties: Optional[Mapping[str, Any]] = None,
        group_ids: Optional[Iterable[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> EvaluationResult:
        """Evaluate one flag. Raises ``FlagNotFoundError`` for unknown keys."""
        context = self._context(subject_id, properties, group_ids, timestamp)
        return self.evaluate_context(key, context)

    def evaluate_context(self, key: str, context: EvaluationContext) -> EvaluationResult:
        started = time.perf_counter()
        result = self.evaluator.evaluate_key(key, context)
        record_evaluation(result.reason.value, time.perf_counter() - started)
        self._track(result)
        return result

    def evaluate_in_environment(
        self,
        key: str,
        subject_id: str,
        environment: str,
        properties: Optional[Mapping[str, Any]] = None,
        group_ids: Optional[Iterable[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> EvaluationResult:
        context = self._context(subject_id, properties, group_ids, timestamp)
        return self.evaluate_context(key, context.with_property(ENVIRONMENT_PROPERTY, environment))

    def evaluate_batch(
        self,
        keys: Iterable[str],
        subject_id: str = "",
        properties: Optional[Mapping[str, Any]] = None,
        group_ids: Optional[Iterable[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Evaluate several flags; unknown keys are skipped."""
        context = self._context(subject_id, properties, group_ids, timestamp)
        results: Dict[str, Any] = {}
        for key in keys:
            try:
                results[key] = self.evaluate_context(key, context).value
            except FlagNotFoundError:
                logger.debug(f"Skipping unknown flag {key} in batch", extra={"flag_key": key})
        return results

    def is_enabled(
        self,
        key: str,
        subject_id: str = "",
        properties: Optional[Mapping[str, Any]] = None,
        default: bool = False,
    ) -> bool:
        """Boolean convenience; unknown flags yield ``default``."""
        try:
            value = self.evaluate(key, subject_id, properties).value
        except FlagNotFoundError:
            return default
        return value is True

    # History and metrics

    def get_history(self, key: str) -> List[HistoryEntry]:
        return self.history.get(key)

    def get_metrics(self, key: str) -> Optional[EvaluationMetrics]:
        with self._metrics_lock:
            metrics = self._metrics.get(key)
            return dataclasses.replace(
                metrics,
                reason_counts=dict(metrics.reason_counts),
                variant_counts=dict(metrics.variant_counts),
            ) if metrics else None

    def get_all_metrics(self) -> Dict[str, EvaluationMetrics]:
        with self._metrics_lock:
            keys = list(self._metrics)
        return {key: metrics for key in keys if (metrics := self.get_metrics(key)) is not None}

    # Internals

    def _context(
        self,
        subject_id: str,
        properties: Optional[Mapping[str, Any]],
        group_ids: Optional[Iterable[str]],
        timestamp: Optional[datetime],
    ) -> EvaluationContext:
        context = EvaluationContext(
            subject_id=subject_id or "",
            properties=properties or {},
            group_ids=frozenset(group_ids or ()),
            timestamp=timestamp,
        )
        default_environment = get_settings().default_environment
        if default_environment and ENVIRONMENT_PROPERTY not in context.properties:
            context = context.with_property(ENVIRONMENT_PROPERTY, default_environment)
        return context

    def _mutate(self, key: str, change: Callable[[Flag], Flag], detail: str) -> Flag:
        def stamped(flag: Flag) -> Flag:
            return dataclasses.replace(change(flag), updated_at=_utcnow())

        with self._mutation_lock:
            before, after = self.registry.update(key, stamped)
            self._record(key, ChangeAction.UPDATED, before, after, detail, timestamp=after.updated_at)
        logger.info(f"Updated flag {key}: {detail}", extra={"flag_key": key, "detail": detail})
        return after

    def _record(
        self,
        key: str,
        action: ChangeAction,
        before: Optional[Flag],
        after: Optional[Flag],
        detail: str = "",
        timestamp: Optional[datetime] = None,
    ) -> None:
        self.history.record(key, action, before, after, detail, timestamp=timestamp)
        record_mutation(action.value)

    def _track(self, result: EvaluationResult) -> None:
        with self._metrics_lock:
            metrics = self._metrics.get(result.flag_key)
            if metrics is None:
                metrics = self._metrics[result.flag_key] = EvaluationMetrics(flag_key=result.flag_key)
            metrics.total_evaluations += 1
            reason = result.reason.value
            metrics.reason_counts[reason] = metrics.reason_counts.get(reason, 0) + 1
            if result.variant_key:
                counts = metrics.variant_counts
                counts[result.variant_key] = counts.get(result.variant_key, 0) + 1
            metrics.last_evaluation = _utcnow()


# Global service instance
_service: Optional[FeatureFlagService] = None
_service_lock = threading.Lock()


def get_flag_service() -> FeatureFlagService:
    """Get the process-wide flag service."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = FeatureFlagService()
    return _service


def reset_flag_service() -> None:
    """Reset the process-wide service (for testing)."""
    global _service
    with _service_lock:
        _service = None
