"""
Server-side role checks for privileged actions.

Fetches the highest-priority role for a user through the ``get_user_role``
procedure and compares it against the hierarchy.
"""
from __future__ import annotations

import logging

from ..errors import InsufficientRoleError, RemoteInvocationError
from ..rpc.invoker import RemoteInvoker
from .roles import DEFAULT_ROLE, Role, parse_role, role_level

logger = logging.getLogger("admin_gate.roles")

GET_USER_ROLE_PROCEDURE = "get_user_role"


async def get_user_role(invoker: RemoteInvoker, user_id: str) -> Role | None:
    """Fetch a user's role. Falls back to 'user' on error or when none is assigned.

    The procedure may answer with a bare role string or ``{"role": ...}``.
    """
    try:
        result = await invoker.invoke(GET_USER_ROLE_PROCEDURE, {"_user_id": user_id})
    except RemoteInvocationError as exc:
        logger.error("Error fetching role user_id=%s message=%s", user_id, exc.message)
        return DEFAULT_ROLE

    raw = result.get("role") if isinstance(result, dict) else result
    return parse_role(raw)


async def require_role(invoker: RemoteInvoker, user_id: str, required_role: Role) -> Role | None:
    """Return the user's role, or raise if it ranks below ``required_role``.

    Raises:
        InsufficientRoleError: If the user's level is strictly greater than
            the required level
    """
    user_role = await get_user_role(invoker, user_id)
    if role_level(user_role) > role_level(required_role):
        current = user_role.value if user_role is not None else "unknown"
        raise InsufficientRoleError(required_role.value, current)
    return user_role
