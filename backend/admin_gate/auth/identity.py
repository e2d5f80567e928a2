"""
Read-only view of the caller's session.

Tokens are issued and refreshed by the hosted identity provider. This module
only verifies and reads them; it never authenticates or refreshes anyone.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt


class InvalidTokenError(Exception):
    """Raised when a token cannot be parsed or is malformed."""


class ExpiredTokenError(Exception):
    """Raised when a token has expired."""


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    access_token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class SessionState:
    """What the identity provider currently knows about the caller.

    ``user is None`` with ``is_loading=False`` means unauthenticated, which is
    a valid terminal state.
    """

    user: Identity | None = None
    is_loading: bool = False

    @classmethod
    def loading(cls) -> "SessionState":
        return cls(user=None, is_loading=True)

    @classmethod
    def anonymous(cls) -> "SessionState":
        return cls(user=None, is_loading=False)

    @classmethod
    def authenticated(cls, user: Identity) -> "SessionState":
        return cls(user=user, is_loading=False)


class IdentityProvider(Protocol):
    def session_for_token(self, token: str | None) -> SessionState: ...


def _parse_token_payload(
    token: str, secret: str, algorithm: str, audience: str | None
) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            audience=audience,
            options={"verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError as exc:
        raise ExpiredTokenError from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError from exc


class TokenIdentityProvider:
    """Maps a platform-issued bearer token to a SessionState.

    Missing, invalid and expired tokens all yield an anonymous session.
    """

    def __init__(self, secret: str, *, algorithm: str = "HS256", audience: str | None = None):
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    def decode(self, token: str) -> Identity:
        payload = _parse_token_payload(token, self._secret, self._algorithm, self._audience)
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError()
        email = payload.get("email")
        return Identity(
            user_id=subject,
            email=email if isinstance(email, str) else None,
            access_token=token,
        )

    def session_for_token(self, token: str | None) -> SessionState:
        if not token:
            return SessionState.anonymous()
        try:
            return SessionState.authenticated(self.decode(token))
        except (InvalidTokenError, ExpiredTokenError):
            return SessionState.anonymous()


class StaticIdentityProvider:
    """Returns a fixed session regardless of token. Used for wiring and tests."""

    def __init__(self, session: SessionState):
        self.session = session

    def session_for_token(self, token: str | None) -> SessionState:
        return self.session
