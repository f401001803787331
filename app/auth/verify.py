"""
verify.py
---------
Purpose:
    Capability checks for the outbound and automation admin endpoints.

Notes:
    - Internal callers (cron, workers) present `x-internal-key` matching the
      feature's shared secret.
    - Dashboard callers present `x-user-role`; only privileged roles pass.
    - Missing role -> 401, insufficient role -> 403.
    - Each dependency returns the actor id used in audit entries.
"""

import hmac
from collections.abc import Callable

from fastapi import Header, HTTPException, status

from app.config import settings

USER_ROLES = ("agent", "supervisor", "admin", "analyst")


def _internal_key_matches(provided: str | None, expected: str | None) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def check_admin_access(
    internal_key: str | None,
    user_role: str | None,
    expected_key: str | None,
    allowed_roles: tuple[str, ...] = ("admin",),
) -> str:
    """
    Resolve the caller into an actor id or raise 401/403.

    Returns:
        "internal" for shared-secret callers, otherwise the role name.
    """
    if _internal_key_matches(internal_key, expected_key):
        return "internal"

    role = (user_role or "").strip().lower()
    if not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing x-user-role header",
        )
    if role not in allowed_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return role


def _guard(key_name: str, allowed_roles: tuple[str, ...]) -> Callable[..., str]:
    def dependency(
        x_internal_key: str | None = Header(default=None),
        x_user_role: str | None = Header(default=None),
    ) -> str:
        return check_admin_access(
            x_internal_key,
            x_user_role,
            getattr(settings, key_name),
            allowed_roles,
        )

    return dependency


# Outbound endpoints; run/cancel also accept supervisors
require_outbound_admin = _guard("OUTBOUND_INTERNAL_KEY", ("admin",))
require_outbound_operator = _guard("OUTBOUND_INTERNAL_KEY", ("admin", "supervisor"))

# Automation endpoints
require_automation_admin = _guard("AUTOMATION_INTERNAL_KEY", ("admin",))
