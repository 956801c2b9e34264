"""In-memory flag registry.

The registry holds an immutable mapping of key -> ``Flag``. Writers are
serialized by a lock and publish a brand new mapping on every change, so a
reader always works against one complete snapshot and never sees a
half-updated definition. Reads take no lock.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from flagengine.core.errors import FlagAlreadyExistsError, FlagNotFoundError, FlagValidationError
from flagengine.core.feature_flags.models import Flag, validate_flag

logger = logging.getLogger(__name__)


class FlagRegistry:
    """Copy-on-write store of flag definitions keyed by flag key."""

    def __init__(self, flags: Optional[List[Flag]] = None) -> None:
        self._write_lock = threading.Lock()
        self._flags: Mapping[str, Flag] = MappingProxyType({})
        for flag in flags or []:
            self.add(flag)

    def _publish(self, flags: Dict[str, Flag]) -> None:
        self._flags = MappingProxyType(flags)

    def snapshot(self) -> Mapping[str, Flag]:
        """Read-only view of every flag as of now."""
        return self._flags

    def get(self, key: str) -> Optional[Flag]:
        return self._flags.get(key)

    def require(self, key: str) -> Flag:
        flag = self._flags.get(key)
        if flag is None:
            raise FlagNotFoundError(key)
        return flag

    def keys(self) -> List[str]:
        return list(self._flags)

    def list_flags(self) -> List[Flag]:
        return list(self._flags.values())

    def __contains__(self, key: object) -> bool:
        return key in self._flags

    def __len__(self) -> int:
        return len(self._flags)

    def add(self, flag: Flag) -> Flag:
        """Insert a new flag; duplicates are rejected."""
        validate_flag(flag)
        with self._write_lock:
            if flag.key in self._flags:
                raise FlagAlreadyExistsError(flag.key)
            flags = dict(self._flags)
            flags[flag.key] = flag
            self._publish(flags)
        logger.debug(f"Registered flag {flag.key}", extra={"flag_key": flag.key})
        return flag

    def add_or_replace(self, flag: Flag) -> Optional[Flag]:
        """Insert or wholly replace a flag. Returns the previous definition."""
        validate_flag(flag)
        with self._write_lock:
            previous = self._flags.get(flag.key)
            if previous is not None and previous.flag_type != flag.flag_type:
                raise FlagValidationError(f"flag type of {flag.key} is immutable")
            flags = dict(self._flags)
            flags[flag.key] = flag
            self._publish(flags)
        return previous

    def update(self, key: str, change: Callable[[Flag], Flag]) -> Tuple[Flag, Flag]:
        """Replace a flag with ``change(current)`` atomically.

        ``change`` runs under the write lock so concurrent updates to the same
        flag never lose each other's edits. Any exception it raises leaves the
        registry untouched.
        """
        with self._write_lock:
            before = self._flags.get(key)
            if before is None:
                raise FlagNotFoundError(key)
            after = change(before)
            if after.key != key:
                raise FlagValidationError(f"flag key {key} is immutable")
            if after.flag_type != before.flag_type:
                raise FlagValidationError(f"flag type of {key} is immutable")
            validate_flag(after)
            flags = dict(self._flags)
            flags[key] = after
            self._publish(flags)
        return before, after

    def remove(self, key: str) -> Flag:
        """Delete a flag and return the removed definition."""
        with self._write_lock:
            removed = self._flags.get(key)
            if removed is None:
                raise FlagNotFoundError(key)
            flags = dict(self._flags)
            del flags[key]
            self._publish(flags)
        logger.debug(f"Removed flag {key}", extra={"flag_key": key})
        return removed

    def clear(self) -> None:
        with self._write_lock:
            self._publish({})
