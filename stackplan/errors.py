"""
Stackplan Exception Classes.

Every failure raised by plan generation inherits from StackplanError so
callers can report the failing provider, step or chain uniformly.

Usage:
    from stackplan.errors import InvalidPlanError

    if step.id in seen:
        raise InvalidPlanError(f"Duplicate step id '{step.id}'", step_id=step.id)
"""

from __future__ import annotations

from typing import Any


class StackplanError(Exception):
    """
    Base exception for all plan generation errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
    """

    def __init__(self, message: str, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for reporting."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code='{self.code}', message='{self.message}')"


class DetectionError(StackplanError):
    """
    Raised when the project tree cannot be read.

    Fatal: aborts the whole generation. The provider that was running
    is attached when known.
    """

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        if provider:
            message = f"[{provider}] {message}"
        super().__init__(message, code="DETECTION_ERROR")


class InvalidPlanError(StackplanError):
    """
    Raised on a structural violation of the build plan.

    Use this for:
    - Duplicate step ids
    - Dependency cycles
    - A step depending on a step in a later phase
    - Dependencies on unknown steps
    """

    def __init__(self, message: str, step_id: str | None = None):
        self.step_id = step_id
        super().__init__(message, code="INVALID_PLAN")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["step_id"] = self.step_id
        return data


class UnresolvedValueError(StackplanError):
    """Raised when a required resolution chain has no hit and no default."""

    def __init__(self, chain: str):
        self.chain = chain
        super().__init__(f"No value resolved for '{chain}'", code="UNRESOLVED_VALUE")


class MetadataConflictError(StackplanError):
    """Raised when a metadata key is written twice with different values."""

    def __init__(self, key: str, existing: Any, value: Any):
        self.key = key
        super().__init__(
            f"Metadata key '{key}' already set to {existing!r}, refusing {value!r}",
            code="METADATA_CONFLICT",
        )


class UnknownProviderError(StackplanError):
    """Raised when a provider is requested by name but not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider '{name}' is not registered", code="UNKNOWN_PROVIDER")


class GenerationCancelled(StackplanError):
    """Raised when the cancellation token fires or the deadline passes."""

    def __init__(self, message: str = "Plan generation cancelled"):
        super().__init__(message, code="CANCELLED")


class MissingStartCommandWarning(UserWarning):
    """
    Emitted when no start command could be resolved.

    Non-fatal: the plan is still valid, with the deploy phase marked unset.
    """
