"""Targeting rule resolution."""

from __future__ import annotations

from typing import Iterable, List, Optional

from flagengine.core.feature_flags.conditions import evaluate_condition
from flagengine.core.feature_flags.models import EvaluationContext, TargetingRule


def ordered_rules(rules: Iterable[TargetingRule]) -> List[TargetingRule]:
    """Enabled rules by ascending priority; ties keep insertion order."""
    return sorted((r for r in rules if r.enabled), key=lambda r: r.priority)


def rule_matches(rule: TargetingRule, context: EvaluationContext) -> bool:
    """All conditions must hold. A rule without conditions matches everyone."""
    return all(evaluate_condition(c, context) for c in rule.conditions)


def match_rule(
    rules: Iterable[TargetingRule],
    context: EvaluationContext,
) -> Optional[TargetingRule]:
    """First matching rule in priority order, or ``None``."""
    for rule in ordered_rules(rules):
        if rule_matches(rule, context):
            return rule
    return None
