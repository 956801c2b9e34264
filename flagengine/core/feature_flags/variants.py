"""Weighted variant selection."""

from __future__ import annotations

from typing import Optional, Sequence

from flagengine.core.feature_flags.bucketing import bucket
from flagengine.core.feature_flags.models import Variant


def select_variant(
    subject_id: str,
    flag_key: str,
    variants: Sequence[Variant],
) -> Optional[Variant]:
    """Pick a variant for the subject, sticky per flag.

    The subject is bucketed into ``[0, total_weight)`` and variants are walked
    in definition order, accumulating weight until the bucket falls inside a
    slice. When every weight is zero the first variant wins.
    """
    if not variants:
        return None

    total_weight = sum(v.weight for v in variants)
    if total_weight <= 0:
        return variants[0]

    threshold = bucket(subject_id, flag_key, buckets=total_weight)
    cumulative = 0
    for variant in variants:
        cumulative += variant.weight
        if threshold < cumulative:
            return variant

    return variants[-1]
