"""
Gate dependencies for protected routes.

Each request evaluates its own RouteGate and closes it when the request ends.
Denial raises GateRedirect, which ``main`` turns into a redirect (browser
callers) or a 401/403 error payload (JSON callers).

Role denials are written to the audit log (best-effort, fire-and-forget).
"""
from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.gate import Allow, Deny, RouteGate
from .auth.identity import Identity, SessionState
from .auth.role_resolver import RoleState
from .auth.roles import Role
from .errors import AuthorizationPendingError
from .schemas.audit_log import AuditLogEntry
from .state import AppState

bearer_scheme = HTTPBearer(auto_error=False)


class GateRedirect(Exception):
    """A gate denied the request. Carries the Deny decision to the exception handler."""

    def __init__(self, decision: Deny, *, wants_json: bool):
        self.decision = decision
        self.wants_json = wants_json
        super().__init__(decision.redirect_to)


@dataclass(frozen=True)
class GateContext:
    user: Identity
    role_state: RoleState | None = None


def get_app_state(request: Request) -> AppState:
    return request.app.state.gate


def request_location(request: Request) -> str:
    location = request.url.path
    if request.url.query:
        location = f"{location}?{request.url.query}"
    return location


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    if request.client is not None:
        return request.client.host
    return "unknown"


def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


async def get_session_state(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    state: AppState = Depends(get_app_state),
) -> SessionState:
    token = None
    if credentials is not None and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    return state.identity.session_for_token(token)


async def require_session(
    request: Request,
    session: SessionState = Depends(get_session_state),
    state: AppState = Depends(get_app_state),
) -> AsyncIterator[GateContext]:
    gate = RouteGate(location=request_location(request), sign_in_path=state.sign_in_path)
    try:
        decision = await gate.evaluate(session)
        if isinstance(decision, Deny):
            raise GateRedirect(decision, wants_json=wants_json(request))
        if not isinstance(decision, Allow) or session.user is None:
            raise AuthorizationPendingError()
        yield GateContext(user=session.user)
    finally:
        gate.close()


def require_role(required_role: Role) -> Callable:
    """
    Enforce a minimum role on a route.

    Verifies:
    - Caller has a session (sign-in redirect carrying the location if not)
    - Caller's role ranks at or above ``required_role`` (root redirect if not)

    Args:
        required_role: Least privileged role allowed through

    Returns:
        Dependency that yields the GateContext of an allowed caller
    """
    async def dependency(
        request: Request,
        session: SessionState = Depends(get_session_state),
        state: AppState = Depends(get_app_state),
    ) -> AsyncIterator[GateContext]:
        gate = RouteGate(
            location=request_location(request),
            resolver=state.resolver,
            required_role=required_role,
            sign_in_path=state.sign_in_path,
            app_root=state.app_root_path,
        )
        try:
            decision = await gate.evaluate(session)
            if isinstance(decision, Deny):
                if session.user is not None:
                    state.recorder.record(
                        AuditLogEntry(
                            user_id=session.user.user_id,
                            ip_address=client_ip(request),
                            action="gate.denied",
                            success=False,
                            http_status=403,
                            error_code="FORBIDDEN",
                            error_message=f"Required role: {required_role.value}",
                            request_body={
                                "request_method": request.method,
                                "request_path": request.url.path,
                            },
                        )
                    )
                raise GateRedirect(decision, wants_json=wants_json(request))
            if not isinstance(decision, Allow) or session.user is None:
                raise AuthorizationPendingError()
            yield GateContext(user=session.user, role_state=gate.role_state)
        finally:
            gate.close()

    return dependency
