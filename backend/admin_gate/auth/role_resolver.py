"""
Resolve the caller's role through the remote role-fetch action.

SECURITY:
- No session, no remote call: anonymous callers cannot probe privileges
- A missing role in the response falls back to the least privileged
  defined role (user)
- An unrecognised role string is kept as "no role" and ranks at
  UNKNOWN_ROLE_LEVEL, so it can never satisfy a requirement
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from ..errors import RemoteInvocationError
from ..rpc.invoker import RemoteInvoker
from .identity import Identity, SessionState
from .role_cache import RoleCacheBackend
from .roles import ROLE_HIERARCHY, UNKNOWN_ROLE_LEVEL, Role, parse_role

logger = logging.getLogger("admin_gate.roles")

ROLE_PROCEDURE = "admin-crud"
ROLE_ACTION = "get-my-role"


@dataclass(frozen=True)
class RoleState:
    role: Role | None = None
    is_loading: bool = False

    @property
    def level(self) -> int:
        if self.role is None:
            return UNKNOWN_ROLE_LEVEL
        return ROLE_HIERARCHY[self.role]

    @property
    def is_admin(self) -> bool:
        return self.level <= ROLE_HIERARCHY[Role.ADMIN]

    @property
    def is_owner(self) -> bool:
        return self.level <= ROLE_HIERARCHY[Role.OWNER]


class KeyedLocks:
    """One asyncio.Lock per key, dropped as soon as nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


def role_from_response(result: Any) -> Role | None:
    raw = result.get("role") if isinstance(result, Mapping) else None
    role = parse_role(raw)
    if role is None:
        logger.warning("Unrecognised role in response value=%r", raw)
    return role


class RoleResolver:
    def __init__(
        self,
        invoker: RemoteInvoker,
        cache: RoleCacheBackend,
        *,
        procedure: str = ROLE_PROCEDURE,
        action: str = ROLE_ACTION,
    ):
        self.invoker = invoker
        self.cache = cache
        self._procedure = procedure
        self._action = action
        self._locks = KeyedLocks()

    async def resolve(self, session: SessionState, *, force: bool = False) -> RoleState:
        """Resolve the role for ``session``.

        Args:
            session: Current session from the identity provider
            force: Fetch even if the cached entry is still fresh

        Returns:
            RoleState with ``is_loading=True`` while the session itself is
            still loading, an empty state when there is no session.

        Raises:
            RemoteInvocationError: If the role fetch fails
        """
        if session.is_loading:
            return RoleState(is_loading=True)
        if session.user is None:
            return RoleState()

        user = session.user

        if not force:
            cached = await self.cache.get(user.user_id)
            if cached is not None and self.cache.is_fresh(cached):
                return RoleState(role=cached.role)

        async with self._locks.hold(user.user_id):
            if not force:
                cached = await self.cache.get(user.user_id)
                if cached is not None and self.cache.is_fresh(cached):
                    return RoleState(role=cached.role)
            role = await self._fetch(user)
            await self.cache.set(user.user_id, role)

        logger.debug("Resolved role user_id=%s role=%s", user.user_id, role)
        return RoleState(role=role)

    async def _fetch(self, user: Identity) -> Role | None:
        result = await self.invoker.invoke(
            self._procedure,
            {"action": self._action},
            access_token=user.access_token,
        )
        return role_from_response(result)

    async def on_focus(self, user: Identity) -> bool:
        """Refetch the caller's role when it is stale or not cached.

        Uses the access token of the current request, so a rotated token is
        what reaches the remote procedure.

        Returns:
            True if the role was refetched. False if the cached entry was
            still fresh, or if the fetch failed (logged, previous entry kept).
        """
        cached = await self.cache.get(user.user_id)
        if cached is not None and self.cache.is_fresh(cached):
            return False
        try:
            await self.resolve(SessionState.authenticated(user), force=True)
        except RemoteInvocationError as exc:
            logger.warning("Focus refresh failed user_id=%s message=%s", user.user_id, exc.message)
            return False
        return True
