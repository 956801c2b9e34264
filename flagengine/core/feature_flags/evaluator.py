"""Flag evaluation pipeline.

Stages run in fixed precedence and each either decides the result or falls
through to the next:

1. disabled          -> default value
2. outside schedule  -> default value
3. dependency unmet  -> default value
4. override          -> override value (user overrides before group ones)
5. environment       -> ``True`` for boolean flags enabled in the context's
                        ``environment``
6. targeting rules   -> value of the first matching rule
7. variants          -> value of the bucketed variant
8. rollout           -> ``True``/``False`` for boolean flags only
9. default           -> default value

Evaluation is a pure function of the registry snapshot and the context: it
never mutates a flag, never writes history and never raises for problems
inside a flag definition.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Tuple

from flagengine.core.config import get_settings
from flagengine.core.errors import FlagNotFoundError
from flagengine.core.feature_flags.models import (
    EvaluationContext,
    EvaluationReason,
    EvaluationResult,
    Flag,
    Override,
    OverrideType,
)
from flagengine.core.feature_flags.conditions import lookup
from flagengine.core.feature_flags.registry import FlagRegistry
from flagengine.core.feature_flags.rollout import in_rollout, in_schedule
from flagengine.core.feature_flags.rules import match_rule
from flagengine.core.feature_flags.values import FlagType, is_truthy, snapshot_value
from flagengine.core.feature_flags.variants import select_variant

logger = logging.getLogger(__name__)

ENVIRONMENT_PROPERTY = "environment"
USER_ID_PROPERTY = "user.id"


def _user_ids(context: EvaluationContext) -> Tuple[str, ...]:
    """Identities a user override can match: the subject and a ``user.id`` property."""
    ids = (context.subject_id,) if context.subject_id else ()
    found, user_id = lookup(context, USER_ID_PROPERTY)
    if found and isinstance(user_id, str) and user_id:
        ids += (user_id,)
    return ids


class FlagEvaluator:
    """Resolves flag values against an evaluation context."""

    def __init__(
        self,
        registry: Optional[FlagRegistry] = None,
        max_dependency_depth: Optional[int] = None,
    ):
        self.registry = registry if registry is not None else FlagRegistry()
        if max_dependency_depth is None:
            max_dependency_depth = get_settings().max_dependency_depth
        self.max_dependency_depth = max_dependency_depth

    def evaluate(self, flag: Flag, context: Optional[EvaluationContext] = None) -> EvaluationResult:
        """Evaluate ``flag``; dependencies resolve against the current registry."""
        context = context or EvaluationContext()
        return self._evaluate(flag, context, self.registry.snapshot(), (), 0)

    def evaluate_key(self, key: str, context: Optional[EvaluationContext] = None) -> EvaluationResult:
        """Evaluate a registered flag. Raises ``FlagNotFoundError`` for unknown keys."""
        context = context or EvaluationContext()
        snapshot = self.registry.snapshot()
        flag = snapshot.get(key)
        if flag is None:
            raise FlagNotFoundError(key)
        return self._evaluate(flag, context, snapshot, (), 0)

    def _evaluate(
        self,
        flag: Flag,
        context: EvaluationContext,
        snapshot: Mapping[str, Flag],
        path: Tuple[str, ...],
        depth: int,
    ) -> EvaluationResult:
        if not flag.enabled:
            return self._result(flag, context, flag.default_value, EvaluationReason.DISABLED)

        if flag.schedule and not in_schedule(flag.schedule, context.timestamp):
            return self._result(flag, context, flag.default_value, EvaluationReason.OUTSIDE_SCHEDULE)

        if flag.dependencies and not self._dependencies_met(flag, context, snapshot, path, depth):
            return self._result(flag, context, flag.default_value, EvaluationReason.DEPENDENCY_NOT_MET)

        override = self._find_override(flag, context)
        if override is not None:
            return self._result(flag, context, override.value, EvaluationReason.OVERRIDE)

        if flag.flag_type is FlagType.BOOLEAN and flag.environments:
            environment = context.properties.get(ENVIRONMENT_PROPERTY)
            if environment is not None and str(environment) in flag.environments:
                return self._result(flag, context, True, EvaluationReason.ENVIRONMENT)

        rule = match_rule(flag.rules, context)
        if rule is not None:
            return self._result(
                flag, context, rule.value, EvaluationReason.RULE_MATCH, rule_id=rule.id
            )

        if flag.variants:
            variant = select_variant(context.subject_id, flag.key, flag.variants)
            if variant is not None:
                return self._result(
                    flag, context, variant.value, EvaluationReason.VARIANT, variant_key=variant.key
                )

        # Rollout only gates boolean toggles; other types fall through
        if flag.rollout and flag.flag_type is FlagType.BOOLEAN:
            return self._result(
                flag, context, in_rollout(flag.rollout, flag.key, context), EvaluationReason.ROLLOUT
            )

        return self._result(flag, context, flag.default_value, EvaluationReason.DEFAULT)

    def _dependencies_met(
        self,
        flag: Flag,
        context: EvaluationContext,
        snapshot: Mapping[str, Flag],
        path: Tuple[str, ...],
        depth: int,
    ) -> bool:
        path = path + (flag.key,)
        if depth + 1 > self.max_dependency_depth:
            logger.warning(
                f"Dependency depth limit reached evaluating {flag.key}",
                extra={"flag_key": flag.key, "depth": depth},
            )
            return False

        for dep_key in flag.dependencies:
            if dep_key in path:
                logger.warning(
                    f"Circular dependency {' -> '.join(path + (dep_key,))}",
                    extra={"flag_key": flag.key},
                )
                return False
            dependency = snapshot.get(dep_key)
            if dependency is None:
                logger.debug(
                    f"Dependency {dep_key} of {flag.key} is not registered",
                    extra={"flag_key": flag.key},
                )
                return False
            result = self._evaluate(dependency, context, snapshot, path, depth + 1)
            if result.reason is EvaluationReason.DEPENDENCY_NOT_MET:
                return False
            if dependency.flag_type is FlagType.BOOLEAN and not is_truthy(
                result.value, dependency.flag_type
            ):
                return False
        return True

    @staticmethod
    def _find_override(flag: Flag, context: EvaluationContext) -> Optional[Override]:
        user_ids = _user_ids(context)
        group_match = None
        for override in flag.overrides:
            if not override.is_active(context.timestamp):
                continue
            if override.target_type is OverrideType.USER:
                if override.target in user_ids:
                    return override
            elif group_match is None and override.target in context.group_ids:
                group_match = override
        return group_match

    @staticmethod
    def _result(
        flag: Flag,
        context: EvaluationContext,
        value,
        reason: EvaluationReason,
        rule_id: Optional[str] = None,
        variant_key: Optional[str] = None,
    ) -> EvaluationResult:
        logger.debug(
            f"Evaluated {flag.key}: {reason.value}",
            extra={
                "flag_key": flag.key,
                "subject_id": context.subject_id,
                "reason": reason.value,
                "rule_id": rule_id,
                "variant_key": variant_key,
            },
        )
        return EvaluationResult(
            flag_key=flag.key,
            value=snapshot_value(value),
            reason=reason,
            rule_id=rule_id,
            variant_key=variant_key,
            timestamp=context.timestamp,
        )
