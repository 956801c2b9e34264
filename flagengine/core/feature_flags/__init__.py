"""Feature flag evaluation engine.

Provides:
- Deterministic sticky bucketing
- Targeting rules over context properties
- Percentage, scheduled and gradual rollouts
- Weighted variants for A/B testing
- Overrides, environments and flag dependencies
- Copy-on-write registry with change history
"""

from flagengine.core.feature_flags.bucketing import bucket
from flagengine.core.feature_flags.conditions import evaluate_condition, lookup
from flagengine.core.feature_flags.decorators import feature_flag, feature_variant
from flagengine.core.feature_flags.evaluator import FlagEvaluator
from flagengine.core.feature_flags.history import ChangeAction, ChangeHistory, HistoryEntry
from flagengine.core.feature_flags.models import (
    Condition,
    EvaluationContext,
    EvaluationReason,
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
from flagengine.core.feature_flags.rollout import in_rollout, in_schedule
from flagengine.core.feature_flags.rules import match_rule
from flagengine.core.feature_flags.service import (
    EvaluationMetrics,
    ExperimentVariant,
    FeatureFlagService,
    get_flag_service,
    reset_flag_service,
)
from flagengine.core.feature_flags.values import FlagType
from flagengine.core.feature_flags.variants import select_variant

__all__ = [
    # Model
    "Condition",
    "EvaluationContext",
    "EvaluationReason",
    "EvaluationResult",
    "Flag",
    "FlagType",
    "GradualStep",
    "Operator",
    "Override",
    "OverrideType",
    "RolloutStrategy",
    "RolloutType",
    "Schedule",
    "TargetingRule",
    "Variant",
    # Engine
    "bucket",
    "evaluate_condition",
    "lookup",
    "match_rule",
    "in_rollout",
    "in_schedule",
    "select_variant",
    "FlagEvaluator",
    # Storage
    "ChangeAction",
    "ChangeHistory",
    "FlagRegistry",
    "HistoryEntry",
    # Service
    "EvaluationMetrics",
    "ExperimentVariant",
    "FeatureFlagService",
    "feature_flag",
    "feature_variant",
    "get_flag_service",
    "reset_flag_service",
]
