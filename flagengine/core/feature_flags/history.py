"""Append-only change history per flag key."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from flagengine.core.feature_flags.models import Flag

logger = logging.getLogger(__name__)


class ChangeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class HistoryEntry:
    """One recorded change; ``before``/``after`` are full flag snapshots."""
    action: ChangeAction
    before: Optional[Flag]
    after: Optional[Flag]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "detail": self.detail,
            "before": self.before.to_dict() if self.before else None,
            "after": self.after.to_dict() if self.after else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ChangeHistory:
    """Audit trail of flag changes. Never consulted during evaluation."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[HistoryEntry, ...]] = {}
        self._lock = threading.Lock()

    def record(
        self,
        key: str,
        action: ChangeAction,
        before: Optional[Flag],
        after: Optional[Flag],
        detail: str = "",
        timestamp: Optional[datetime] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            action=action,
            before=before,
            after=after,
            timestamp=timestamp or datetime.now(timezone.utc),
            detail=detail,
        )
        with self._lock:
            self._entries[key] = self._entries.get(key, ()) + (entry,)
        logger.debug(
            f"Recorded {action.value} for flag {key}",
            extra={"flag_key": key, "action": action.value, "detail": detail},
        )
        return entry

    def get(self, key: str) -> List[HistoryEntry]:
        """Entries for ``key`` in the order they were recorded."""
        return list(self._entries.get(key, ()))

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())
