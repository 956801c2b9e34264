"""Prometheus metrics for flag evaluation and mutation.

All metric objects are defined at import time and registered on the default
registry. Recording goes through the helpers below so that
``metrics_enabled=False`` turns every call into a no-op.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

from flagengine.core.config import get_settings

feature_flag_evaluations_total = Counter(
    "feature_flag_evaluations_total",
    "Number of feature flag evaluations",
    ["reason"],
)
feature_flag_evaluation_duration_seconds = Histogram(
    "feature_flag_evaluation_duration_seconds",
    "Feature flag evaluation duration",
    buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05],
)
feature_flag_mutations_total = Counter(
    "feature_flag_mutations_total",
    "Number of feature flag definition changes",
    ["action"],
)


def record_evaluation(reason: str, duration_seconds: float) -> None:
    if not get_settings().metrics_enabled:
        return
    feature_flag_evaluations_total.labels(reason=reason).inc()
    feature_flag_evaluation_duration_seconds.observe(duration_seconds)


def record_mutation(action: str) -> None:
    if not get_settings().metrics_enabled:
        return
    feature_flag_mutations_total.labels(action=action).inc()
