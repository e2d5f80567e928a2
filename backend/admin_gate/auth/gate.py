"""
Route gating as a small state machine.

    Pending --(session/role known)--> Allow | Deny

Two configurations exist: session-only gating (any authenticated caller) and
role gating (authenticated caller with at least ``required_role``). Terminal
states are not sticky: every re-evaluation re-enters Pending.

Denial is a value, never an exception. A sign-in denial carries the original
location so the sign-in page can send the caller back; a role denial sends
the caller to the application root without preserving the location.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Union

from .identity import SessionState
from .role_resolver import RoleResolver, RoleState
from .roles import Role, role_level

logger = logging.getLogger("admin_gate.gate")

DEFAULT_SIGN_IN_PATH = "/login"
DEFAULT_APP_ROOT = "/"


class DecisionKind(str, Enum):
    PENDING = "pending"
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Pending:
    kind: ClassVar[DecisionKind] = DecisionKind.PENDING


@dataclass(frozen=True)
class Allow:
    kind: ClassVar[DecisionKind] = DecisionKind.ALLOW


@dataclass(frozen=True)
class Deny:
    redirect_to: str
    from_location: str | None = None
    kind: ClassVar[DecisionKind] = DecisionKind.DENY


AccessDecision = Union[Pending, Allow, Deny]

PENDING = Pending()
ALLOW = Allow()


def decide_session(
    session: SessionState,
    *,
    location: str,
    sign_in_path: str = DEFAULT_SIGN_IN_PATH,
) -> AccessDecision:
    if session.is_loading:
        return PENDING
    if session.user is None:
        return Deny(redirect_to=sign_in_path, from_location=location)
    return ALLOW


def decide_role(
    role_state: RoleState,
    required_role: Role,
    *,
    app_root: str = DEFAULT_APP_ROOT,
) -> AccessDecision:
    if role_state.is_loading:
        return PENDING
    if role_state.level > role_level(required_role):
        return Deny(redirect_to=app_root)
    return ALLOW


DecisionListener = Callable[[AccessDecision], None]


class RouteGate:
    """Gate for one protected view.

    Decisions are always computed from the latest evaluation: a result that
    arrives after a newer evaluation started is discarded. After ``close()``
    in-flight role fetches are cancelled and nothing updates the gate.
    """

    def __init__(
        self,
        *,
        location: str,
        resolver: RoleResolver | None = None,
        required_role: Role | None = None,
        sign_in_path: str = DEFAULT_SIGN_IN_PATH,
        app_root: str = DEFAULT_APP_ROOT,
    ):
        if required_role is not None and resolver is None:
            raise ValueError("A role-gated RouteGate requires a RoleResolver")
        self.location = location
        self.resolver = resolver
        self.required_role = required_role
        self.sign_in_path = sign_in_path
        self.app_root = app_root
        self._decision: AccessDecision = PENDING
        self.role_state: RoleState | None = None
        self._generation = 0
        self._inflight: asyncio.Task[RoleState] | None = None
        self._listeners: list[DecisionListener] = []
        self._closed = False

    @property
    def decision(self) -> AccessDecision:
        return self._decision

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: DecisionListener) -> None:
        self._listeners.append(listener)

    def _emit(self, generation: int, decision: AccessDecision) -> bool:
        if self._closed or generation != self._generation:
            return False
        self._decision = decision
        for listener in self._listeners:
            listener(decision)
        return True

    async def evaluate(self, session: SessionState) -> AccessDecision:
        """Recompute the decision for ``session``.

        Raises:
            RemoteInvocationError: If the role fetch fails; the gate stays Pending
        """
        if self._closed:
            return self._decision

        self._generation += 1
        generation = self._generation
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self.role_state = None
        self._emit(generation, PENDING)

        session_decision = decide_session(
            session, location=self.location, sign_in_path=self.sign_in_path
        )
        if self.required_role is None or session_decision is not ALLOW:
            self._emit(generation, session_decision)
            return self._decision

        assert self.resolver is not None
        task = asyncio.ensure_future(self.resolver.resolve(session))
        self._inflight = task
        try:
            role_state = await task
        except asyncio.CancelledError:
            if self._closed or generation != self._generation:
                logger.debug("Discarded superseded role resolution location=%s", self.location)
                return self._decision
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

        decision = decide_role(role_state, self.required_role, app_root=self.app_root)
        if not self._emit(generation, decision):
            return self._decision
        self.role_state = role_state

        if isinstance(decision, Deny):
            logger.info(
                "Role gate denied location=%s required=%s level=%d",
                self.location,
                self.required_role.value,
                role_state.level,
            )
        return decision

    def close(self) -> None:
        """Detach the gate from its view. Idempotent."""
        self._closed = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._listeners.clear()
