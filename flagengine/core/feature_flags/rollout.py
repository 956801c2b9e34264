"""Schedule windows and rollout strategies."""

from __future__ import annotations

from datetime import datetime, time
from typing import Optional

from flagengine.core.feature_flags.bucketing import bucket
from flagengine.core.feature_flags.models import (
    EvaluationContext,
    RolloutStrategy,
    RolloutType,
    Schedule,
)
from flagengine.core.feature_flags.values import ensure_utc


def _within_daily_window(moment: time, start: Optional[time], end: Optional[time]) -> bool:
    if start is None and end is None:
        return True
    if start is None:
        return moment <= end
    if end is None:
        return moment >= start
    if start <= end:
        return start <= moment <= end
    # Window wraps past midnight, e.g. 22:00-02:00
    return moment >= start or moment <= end


def in_schedule(schedule: Schedule, at: datetime) -> bool:
    """Whether ``at`` falls inside every window the schedule defines."""
    at = ensure_utc(at)
    if schedule.start and at < schedule.start:
        return False
    if schedule.end and at > schedule.end:
        return False

    local = at.astimezone(schedule.tz)
    if schedule.days_of_week and local.weekday() not in schedule.days_of_week:
        return False
    return _within_daily_window(local.time().replace(tzinfo=None), schedule.daily_start, schedule.daily_end)


def in_percentage(
    flag_key: str,
    context: EvaluationContext,
    percentage: float,
    sticky: bool = True,
) -> bool:
    """Bucket test shared by the percentage and gradual strategies.

    Non-sticky rollouts mix the evaluation timestamp into the bucket input,
    so the same subject may land differently at different times.
    """
    if percentage <= 0:
        return False
    if percentage >= 100:
        return True
    subject = context.subject_id
    if not sticky:
        subject = f"{subject}@{context.timestamp.isoformat()}"
    return bucket(subject, flag_key) < percentage


def gradual_percentage(strategy: RolloutStrategy, at: datetime) -> float:
    """Percentage of the latest step already reached; 0 before the first."""
    at = ensure_utc(at)
    current = None
    for step in strategy.steps:
        if step.date <= at and (current is None or step.date >= current.date):
            current = step
    return current.percentage if current else 0


def in_rollout(strategy: RolloutStrategy, flag_key: str, context: EvaluationContext) -> bool:
    """Whether the subject is inside the rollout at the context's time."""
    if strategy.type is RolloutType.PERCENTAGE:
        return in_percentage(flag_key, context, strategy.percentage, strategy.sticky)

    if strategy.type is RolloutType.SCHEDULED:
        at = context.timestamp
        if strategy.start_date and at < strategy.start_date:
            return False
        if strategy.end_date and at > strategy.end_date:
            return False
        return True

    if strategy.type is RolloutType.GRADUAL:
        return in_percentage(flag_key, context, gradual_percentage(strategy, context.timestamp))

    return False
