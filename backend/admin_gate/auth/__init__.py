from .gate import ALLOW, PENDING, AccessDecision, Allow, Deny, Pending, RouteGate, decide_role, decide_session
from .identity import Identity, SessionState, StaticIdentityProvider, TokenIdentityProvider
from .role_cache import RedisRoleCache, RoleCache
from .role_resolver import RoleResolver, RoleState
from .role_validator import get_user_role, require_role
from .roles import ROLE_HIERARCHY, UNKNOWN_ROLE_LEVEL, Role, is_valid_role, parse_role, role_level

__all__ = [
    "ALLOW",
    "PENDING",
    "ROLE_HIERARCHY",
    "UNKNOWN_ROLE_LEVEL",
    "AccessDecision",
    "Allow",
    "Deny",
    "Identity",
    "Pending",
    "RedisRoleCache",
    "Role",
    "RoleCache",
    "RoleResolver",
    "RoleState",
    "RouteGate",
    "SessionState",
    "StaticIdentityProvider",
    "TokenIdentityProvider",
    "decide_role",
    "decide_session",
    "get_user_role",
    "is_valid_role",
    "parse_role",
    "require_role",
    "role_level",
]
