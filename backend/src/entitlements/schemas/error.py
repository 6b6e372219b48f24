"""Structured error response schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field, ConfigDict


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    This provides consistent error responses across the API with:
    - Machine-readable error codes
    - Human-readable messages
    - Remediation hints
    - Request tracing information
    """

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound', 'Conflict')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(
        default=None, description="Detailed error information (for validation errors)"
    )
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    documentation_url: str | None = Field(default=None, description="Link to relevant documentation")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "InvalidFeatureKind",
                "message": "Feature cv_builder is TOGGLE, not QUOTA",
                "details": [
                    {
                        "code": "invalid_feature_kind",
                        "message": "Feature cv_builder is TOGGLE, not QUOTA",
                    }
                ],
                "remediation": "Only QUOTA features can be consumed; check TOGGLE features via the entitlements endpoint.",
                "request_id": "req_1234567890",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    INVALID_UUID = "invalid_uuid"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_ENUM_VALUE = "invalid_enum_value"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_FEATURE_KIND = "invalid_feature_kind"

    # Conflict errors (409)
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    SUBSCRIPTION_ALREADY_ACTIVE = "subscription_already_active"
    CONCURRENT_MODIFICATION = "concurrent_modification"

    # Not found errors (404)
    HOLDER_NOT_FOUND = "holder_not_found"
    FEATURE_NOT_IN_PLAN = "feature_not_in_plan"
    PLAN_NOT_FOUND = "plan_not_found"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"

    # Authorization errors (403)
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"

    # External service errors (503)
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_UUID: "Provide a valid UUID v4 identifier",
    ErrorCode.INVALID_AMOUNT: "Provide a positive integer amount",
    ErrorCode.INVALID_FEATURE_KIND: "Only QUOTA features can be consumed; check TOGGLE features via the entitlements endpoint.",
    ErrorCode.HOLDER_NOT_FOUND: "Use a holder type of individual, organization or business and a UUID holder id",
    ErrorCode.FEATURE_NOT_IN_PLAN: "List the holder's entitlements to see which features the plan grants",
    ErrorCode.PLAN_NOT_FOUND: "Verify the plan ID is correct and the plan is active",
    ErrorCode.SUBSCRIPTION_NOT_FOUND: "Verify the subscription ID is correct and the subscription exists",
    ErrorCode.SUBSCRIPTION_ALREADY_ACTIVE: "Change the plan of the existing subscription instead of creating a new one",
    ErrorCode.INVALID_STATE_TRANSITION: "Check the subscription status before retrying the operation",
    ErrorCode.CONCURRENT_MODIFICATION: "The subscription was modified concurrently. Re-read it and retry.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
