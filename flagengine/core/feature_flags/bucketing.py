"""Deterministic bucketing for rollouts and variant assignment.

The bucket is the first 32 bits of ``md5("<salt>:<subject_id>")`` taken
modulo the bucket count. The algorithm is fixed so sticky assignments stay
stable across processes and releases.
"""

from __future__ import annotations

import hashlib

BUCKET_COUNT = 100


def hash_key(subject_id: str, salt: str) -> int:
    """32-bit integer derived from the salted subject id."""
    digest = hashlib.md5(f"{salt}:{subject_id}".encode("utf-8")).hexdigest()  # nosec B324 - stable rollout hashing
    return int(digest[:8], 16)


def bucket(subject_id: str, salt: str, buckets: int = BUCKET_COUNT) -> int:
    """Map a subject to an integer in ``[0, buckets)``.

    Salting with the flag key keeps placements on unrelated flags
    independent.
    """
    if buckets <= 0:
        raise ValueError("buckets must be positive")
    return hash_key(subject_id or "", salt) % buckets
