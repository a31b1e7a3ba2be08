from datetime import timedelta

import jwt
import pytest
from fastapi import HTTPException

from concierge.config import AuthConfig
from concierge.security import (
    SCOPE_APPROVAL,
    SCOPE_SESSION,
    create_access_token,
    decode_access_token,
    identity_claims,
    parse_bearer_token,
    refresh_session_token,
)

from conftest import ALICE


def test_session_token_round_trip(auth_cfg):
    token = create_access_token(auth_cfg, claims=identity_claims(ALICE))
    payload = decode_access_token(auth_cfg, token)

    assert payload["sub"] == ALICE.id
    assert payload["customerId"] == ALICE.id
    assert payload["email"] == "alice@example.com"
    assert payload["lastName"] == "Sato"
    assert payload["scope"] == SCOPE_SESSION
    assert payload["iss"] == "psa-concierge"
    assert payload["exp"] - payload["iat"] == 30 * 60


def test_expired_token_is_401(auth_cfg):
    token = create_access_token(auth_cfg, claims=identity_claims(ALICE), ttl=timedelta(seconds=-5))

    with pytest.raises(HTTPException) as exc:
        decode_access_token(auth_cfg, token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_token_for_other_audience_is_rejected(auth_cfg):
    other = AuthConfig(jwt_secret="test-secret", jwt_audience="someone-else")
    token = create_access_token(other, claims=identity_claims(ALICE))

    with pytest.raises(HTTPException) as exc:
        decode_access_token(auth_cfg, token)
    assert exc.value.detail == "Invalid token"


def test_missing_secret_is_server_error():
    with pytest.raises(HTTPException) as exc:
        create_access_token(AuthConfig(), claims=identity_claims(ALICE))
    assert exc.value.status_code == 500


def test_refresh_keeps_identity_and_extends_expiry(auth_cfg):
    short = create_access_token(auth_cfg, claims=identity_claims(ALICE), ttl=timedelta(minutes=1))
    payload = decode_access_token(auth_cfg, short)

    refreshed = decode_access_token(auth_cfg, refresh_session_token(auth_cfg, payload))

    for claim in ("sub", "customerId", "email", "firstName", "lastName"):
        assert refreshed[claim] == payload[claim]
    assert refreshed["scope"] == SCOPE_SESSION
    assert refreshed["exp"] > payload["exp"]


def test_approval_token_is_not_refreshable(auth_cfg):
    token = create_access_token(
        auth_cfg,
        claims=identity_claims(ALICE),
        scope=SCOPE_APPROVAL,
        extra={"approvalKey": "k-1"},
    )
    payload = decode_access_token(auth_cfg, token)
    assert payload["exp"] - payload["iat"] == 60 * 60

    with pytest.raises(HTTPException) as exc:
        refresh_session_token(auth_cfg, payload)
    assert exc.value.status_code == 403


def test_tampered_token_is_invalid(auth_cfg):
    token = jwt.encode({"sub": "x", "scope": "session"}, "wrong-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc:
        decode_access_token(auth_cfg, token)
    assert exc.value.status_code == 401


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc.def", "abc.def"),
        ("bearer   abc", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        (None, None),
    ],
)
def test_parse_bearer_token(header, expected):
    assert parse_bearer_token(header) == expected
