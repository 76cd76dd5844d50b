"""Deployment exceptions."""

from typing import Any

from outpost_schemas import ErrorCategory, ResourceKind


class OutpostError(Exception):
    """Base exception for deployment errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# =============================================================================
# Before any cloud call
# =============================================================================


class ConfigurationError(OutpostError):
    """The settings document is contradictory or incomplete."""

    def __init__(self, violations: list[str], source: str | None = None) -> None:
        prefix = f"{source}: " if source else ""
        super().__init__(
            f"{prefix}{len(violations)} configuration violation(s): " + "; ".join(violations)
        )
        self.violations = violations
        self.source = source


class ResolutionError(OutpostError):
    """The config is valid but cannot be mapped onto the provider's world."""


class ConfirmationRequired(OutpostError):
    """A destructive operation was requested without operator confirmation."""


# =============================================================================
# Provider
# =============================================================================


class ProviderError(OutpostError):
    """Error raised by a cloud provider call."""

    category = ErrorCategory.UNKNOWN
    transient = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        kind: ResourceKind | None = None,
        logical_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.kind = kind
        self.logical_name = logical_name
        self.status_code = status_code


class ResourceAlreadyExists(ProviderError):
    category = ErrorCategory.ALREADY_EXISTS


class ResourceNotFound(ProviderError):
    category = ErrorCategory.NOT_FOUND


class DependencyInUse(ProviderError):
    """Resource is still attached to something that is detaching."""

    category = ErrorCategory.DEPENDENCY_IN_USE
    transient = True


class AccessDenied(ProviderError):
    category = ErrorCategory.ACCESS_DENIED


class RateLimited(ProviderError):
    category = ErrorCategory.RATE_LIMITED
    transient = True

    def __init__(self, message: str, retry_after: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class QuotaExceeded(ProviderError):
    category = ErrorCategory.QUOTA_EXCEEDED


class ProviderUnavailable(ProviderError):
    """Server-side failure or network error; usually eventual-consistency lag."""

    category = ErrorCategory.UNAVAILABLE
    transient = True


# =============================================================================
# State
# =============================================================================


class StateError(OutpostError):
    """Base for state store errors."""


class LockHeldError(StateError):
    def __init__(self, message: str, owner: str | None = None) -> None:
        super().__init__(message)
        self.owner = owner


class StateCorruptedError(StateError):
    """The state blob exists but cannot be read."""
