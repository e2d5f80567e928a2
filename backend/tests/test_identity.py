import time

import jwt
import pytest

from admin_gate.auth.identity import (
    ExpiredTokenError,
    Identity,
    InvalidTokenError,
    SessionState,
    TokenIdentityProvider,
)

SECRET = "identity-secret"


def _encode(payload: dict, secret: str = SECRET) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def provider() -> TokenIdentityProvider:
    return TokenIdentityProvider(SECRET, audience="authenticated")


def test_decode_reads_subject_and_email(provider):
    token = _encode({"sub": "user-1", "email": "a@example.com", "aud": "authenticated"})

    identity = provider.decode(token)

    assert identity.user_id == "user-1"
    assert identity.email == "a@example.com"
    assert identity.access_token == token


def test_access_token_is_not_in_repr(provider):
    token = _encode({"sub": "user-1", "aud": "authenticated"})

    assert token not in repr(provider.decode(token))


def test_decode_rejects_missing_subject(provider):
    with pytest.raises(InvalidTokenError):
        provider.decode(_encode({"aud": "authenticated"}))


def test_decode_rejects_wrong_audience(provider):
    with pytest.raises(InvalidTokenError):
        provider.decode(_encode({"sub": "user-1", "aud": "service_role"}))


def test_decode_rejects_expired_token(provider):
    token = _encode({"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) - 60})

    with pytest.raises(ExpiredTokenError):
        provider.decode(token)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_session_for_bad_tokens_is_anonymous(provider, token):
    assert provider.session_for_token(token) == SessionState.anonymous()


def test_session_for_foreign_signature_is_anonymous(provider):
    token = _encode({"sub": "user-1", "aud": "authenticated"}, secret="other")

    assert provider.session_for_token(token).user is None


def test_session_for_valid_token(provider):
    token = _encode({"sub": "user-1", "aud": "authenticated"})

    session = provider.session_for_token(token)

    assert session.user == Identity(user_id="user-1", access_token=token)
    assert not session.is_loading


def test_audience_check_can_be_disabled():
    token = _encode({"sub": "user-1", "aud": "anything"})

    assert TokenIdentityProvider(SECRET).decode(token).user_id == "user-1"
