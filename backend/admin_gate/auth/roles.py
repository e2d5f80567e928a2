"""
Role hierarchy for dashboard authorization.

The hierarchy is a fixed, totally-ordered set of four roles. Lower levels are
more privileged:

    owner (1) < admin (2) < moderator (3) < user (4)

SECURITY:
- No runtime-defined roles
- Anything outside the closed set ranks at UNKNOWN_ROLE_LEVEL and never
  satisfies a requirement expressed with a defined role
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Final


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"


ROLE_HIERARCHY: Final[dict[Role, int]] = {
    Role.OWNER: 1,
    Role.ADMIN: 2,
    Role.MODERATOR: 3,
    Role.USER: 4,
}

UNKNOWN_ROLE_LEVEL: Final[int] = 99

DEFAULT_ROLE: Final[Role] = Role.USER


def is_valid_role(value: Any) -> bool:
    """Return True if ``value`` names one of the four defined roles."""
    if isinstance(value, Role):
        return True
    return isinstance(value, str) and value in Role._value2member_map_


def role_level(value: Role | str | None) -> int:
    """Map a role (or raw role string) to its hierarchy level.

    Unrecognised strings and ``None`` map to UNKNOWN_ROLE_LEVEL.
    """
    if not is_valid_role(value):
        return UNKNOWN_ROLE_LEVEL
    return ROLE_HIERARCHY[Role(value)]


def parse_role(value: Any) -> Role | None:
    """Coerce an untrusted role value into the closed enumeration.

    A missing value (``None``) resolves to DEFAULT_ROLE. A present value
    that is not a defined role resolves to ``None``, which ranks at
    UNKNOWN_ROLE_LEVEL downstream.
    """
    if value is None:
        return DEFAULT_ROLE
    if is_valid_role(value):
        return Role(value)
    return None


def meets_requirement(current: Role | str | None, required: Role | str) -> bool:
    """True when ``current`` is at least as privileged as ``required``."""
    return role_level(current) <= role_level(required)
