"""Domain exceptions for the entitlement service.

Each exception carries the machine-readable error code and the HTTP status
the API renders it with (see ``entitlements.main``).
"""
from typing import Any

from entitlements.schemas.error import ErrorCode


class EntitlementError(Exception):
    """Base class for all domain errors."""

    error = "EntitlementError"
    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class HolderNotFound(EntitlementError):
    """Holder reference is not a known kind or not a valid identifier."""

    error = "NotFound"
    code = ErrorCode.HOLDER_NOT_FOUND
    status_code = 404


class InvalidFeatureKind(EntitlementError):
    """Operation requires a QUOTA feature."""

    error = "InvalidFeatureKind"
    code = ErrorCode.INVALID_FEATURE_KIND
    status_code = 400


class FeatureNotInPlan(EntitlementError):
    """Feature key is not granted by the holder's resolved plan."""

    error = "NotFound"
    code = ErrorCode.FEATURE_NOT_IN_PLAN
    status_code = 404


class PlanNotFound(EntitlementError):
    error = "NotFound"
    code = ErrorCode.PLAN_NOT_FOUND
    status_code = 404


class SubscriptionNotFound(EntitlementError):
    error = "NotFound"
    code = ErrorCode.SUBSCRIPTION_NOT_FOUND
    status_code = 404


class SubscriptionAlreadyActive(EntitlementError):
    """Holder already has an active subscription."""

    error = "Conflict"
    code = ErrorCode.SUBSCRIPTION_ALREADY_ACTIVE
    status_code = 409


class InvalidStateTransition(EntitlementError):
    error = "Conflict"
    code = ErrorCode.INVALID_STATE_TRANSITION
    status_code = 409


class ConcurrentModification(EntitlementError):
    """Row changed underneath us (optimistic version check failed)."""

    error = "Conflict"
    code = ErrorCode.CONCURRENT_MODIFICATION
    status_code = 409


class StorageUnavailable(EntitlementError):
    """Transient persistence failure; callers may retry."""

    error = "DatabaseError"
    code = ErrorCode.DATABASE_ERROR
    status_code = 503
