"""Shared error codes and exceptions for the flag engine.

Construction and mutation calls raise these; evaluation only ever raises
``FlagNotFoundError`` for an unknown key.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    FLAG_ALREADY_EXISTS = "FLAG_ALREADY_EXISTS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNKNOWN_OPERATOR = "UNKNOWN_OPERATOR"
    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    OVERRIDE_NOT_FOUND = "OVERRIDE_NOT_FOUND"
    INVALID_DEPENDENCY = "INVALID_DEPENDENCY"


class FeatureFlagError(Exception):
    """Base class for flag engine errors."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {super().__str__()}"


class NotFoundError(FeatureFlagError):
    """A referenced flag, rule or override does not exist."""


class FlagNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(ErrorCode.FLAG_NOT_FOUND, f"feature flag not found: {key}")
        self.key = key


class RuleNotFoundError(NotFoundError):
    def __init__(self, key: str, rule_id: str) -> None:
        super().__init__(ErrorCode.RULE_NOT_FOUND, f"rule {rule_id} not found on flag {key}")
        self.key = key
        self.rule_id = rule_id


class OverrideNotFoundError(NotFoundError):
    def __init__(self, key: str, target: str) -> None:
        super().__init__(
            ErrorCode.OVERRIDE_NOT_FOUND, f"override for {target} not found on flag {key}"
        )
        self.key = key
        self.target = target


class FlagValidationError(FeatureFlagError):
    """A flag definition or mutation violates a precondition."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.VALIDATION_FAILED) -> None:
        super().__init__(code, message)


class FlagAlreadyExistsError(FlagValidationError):
    def __init__(self, key: str) -> None:
        super().__init__(f"feature flag already exists: {key}", ErrorCode.FLAG_ALREADY_EXISTS)
        self.key = key


class UnknownOperatorError(FlagValidationError):
    def __init__(self, operator: object) -> None:
        super().__init__(f"invalid condition operator: {operator!r}", ErrorCode.UNKNOWN_OPERATOR)
        self.operator = operator


class InvalidDependencyError(FlagValidationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCode.INVALID_DEPENDENCY)


__all__ = [
    "ErrorCode",
    "FeatureFlagError",
    "FlagAlreadyExistsError",
    "FlagNotFoundError",
    "FlagValidationError",
    "InvalidDependencyError",
    "NotFoundError",
    "OverrideNotFoundError",
    "RuleNotFoundError",
    "UnknownOperatorError",
]
