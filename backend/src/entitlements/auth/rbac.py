"""Role-Based Access Control (RBAC) decorator and utilities.

Roles:
- Super Admin: Full access, including everything a Service may do
- Billing Admin: Manage plans, subscriptions and the reconciler
- Support Rep: Read entitlements and usage, grant bonus allowance
- Service: Backend callers that check and consume entitlements
"""
from enum import Enum
from functools import wraps
from typing import Callable, List

import structlog
from fastapi import HTTPException, status

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Caller roles."""

    SUPER_ADMIN = "Super Admin"
    BILLING_ADMIN = "Billing Admin"
    SUPPORT_REP = "Support Rep"
    SERVICE = "Service"


# Roles each role satisfies (itself included)
ROLE_HIERARCHY = {
    Role.SUPER_ADMIN: [Role.SUPER_ADMIN, Role.BILLING_ADMIN, Role.SUPPORT_REP, Role.SERVICE],
    Role.BILLING_ADMIN: [Role.BILLING_ADMIN, Role.SUPPORT_REP],
    Role.SUPPORT_REP: [Role.SUPPORT_REP],
    Role.SERVICE: [Role.SERVICE],
}


def check_role_hierarchy(user_role: str, required_roles: List[Role]) -> bool:
    """
    Check if a caller role satisfies any of the required roles.

    Args:
        user_role: Caller's role claim
        required_roles: List of acceptable roles

    Returns:
        True if the role (or a role it inherits) is required
    """
    try:
        user_role_enum = Role(user_role)
    except ValueError:
        logger.warning("invalid_role_check", role=user_role)
        return False

    user_allowed_roles = ROLE_HIERARCHY.get(user_role_enum, [])
    return any(req_role in user_allowed_roles for req_role in required_roles)


def require_roles(*required_roles: Role):
    """
    Decorator to require specific roles for endpoint access.

    The endpoint must declare a ``current_user`` dependency.

    Usage:
        @require_roles(Role.SERVICE, Role.SUPPORT_REP)
        async def get_entitlements(..., current_user: dict = Depends(get_current_user)):
            ...

    Raises:
        HTTPException: 401 without a caller, 403 if the role does not match
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_user = kwargs.get("current_user")

            if not current_user:
                logger.error("rbac_missing_current_user", endpoint=func.__name__)
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required",
                )

            user_role = current_user.get("role")

            if not check_role_hierarchy(user_role, list(required_roles)):
                logger.warning(
                    "rbac_permission_denied",
                    subject=current_user.get("sub"),
                    user_role=user_role,
                    required_roles=[r.value for r in required_roles],
                    endpoint=func.__name__,
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required roles: {', '.join(r.value for r in required_roles)}",
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator
