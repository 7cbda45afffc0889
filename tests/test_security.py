from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from user_service.domain.account import Role
from user_service.domain.errors import InvalidTokenError
from user_service.security.passwords import PasswordHasher
from user_service.security.tokens import SIDE_CHANNEL_TTL, TokenIssuer, TokenKind


def test_hash_is_salted_and_never_plaintext(hasher):
    first = hasher.hash("correct horse")
    second = hasher.hash("correct horse")
    assert first != "correct horse"
    assert first != second
    assert hasher.verify("correct horse", first)
    assert hasher.verify("correct horse", second)


def test_verify_rejects_other_passwords(hasher):
    digest = hasher.hash("p1")
    assert not hasher.verify("p2", digest)
    assert not hasher.verify("", digest)


def test_verify_returns_false_for_malformed_hash(hasher):
    assert hasher.verify("p1", "not-a-bcrypt-hash") is False


def test_default_cost_factor_is_twelve():
    assert PasswordHasher().rounds == 12


def test_access_token_round_trip(token_issuer):
    token = token_issuer.issue_access_token("acc-1", Role.ADMIN)
    claims = token_issuer.validate(token, TokenKind.ACCESS)
    assert claims.subject == "acc-1"
    assert claims.role == "ADMIN"
    assert claims.kind is TokenKind.ACCESS
    remaining = claims.expires_at - datetime.now(timezone.utc)
    assert timedelta(seconds=290) < remaining <= timedelta(seconds=300)


def test_pair_uses_configured_ttls(token_issuer):
    pair = token_issuer.issue_pair("acc-1", Role.USER)
    assert pair.access_expires_in == 300
    assert pair.refresh_expires_in == 3600
    assert token_issuer.validate(pair.refresh_token, TokenKind.REFRESH).subject == "acc-1"


def test_tokens_are_checked_against_expected_kind(token_issuer):
    refresh = token_issuer.issue_refresh_token("acc-1", Role.USER)
    with pytest.raises(InvalidTokenError):
        token_issuer.validate(refresh, TokenKind.ACCESS)

    verify = token_issuer.issue_verify_token("a@example.com")
    with pytest.raises(InvalidTokenError):
        token_issuer.validate(verify.token, TokenKind.RESET)
    with pytest.raises(InvalidTokenError):
        token_issuer.validate(verify.token, TokenKind.REFRESH)


def test_expired_token_is_invalid():
    issuer = TokenIssuer("s3cret", issuer="test", access_ttl_seconds=-30, refresh_ttl_seconds=-30)
    token = issuer.issue_access_token("acc-1", Role.USER)
    with pytest.raises(InvalidTokenError):
        issuer.validate(token, TokenKind.ACCESS)


def test_foreign_signature_and_garbage_are_invalid(token_issuer):
    other = TokenIssuer("other-secret", issuer="user-service-test", access_ttl_seconds=60, refresh_ttl_seconds=60)
    with pytest.raises(InvalidTokenError):
        token_issuer.validate(other.issue_access_token("acc-1", Role.USER), TokenKind.ACCESS)
    with pytest.raises(InvalidTokenError):
        token_issuer.validate("not.a.jwt", TokenKind.ACCESS)


def test_token_from_another_issuer_is_invalid(token_issuer):
    token = jwt.encode(
        {"iss": "someone-else", "kind": "access", "sub": "acc-1", "role": "USER", "exp": 4102444800},
        "test-secret",
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError):
        token_issuer.validate(token, TokenKind.ACCESS)


def test_side_channel_tokens_carry_external_expiry(token_issuer):
    before = datetime.now(timezone.utc)
    issued = token_issuer.issue_reset_token("a@example.com")
    assert before + SIDE_CHANNEL_TTL <= issued.expires_at <= datetime.now(timezone.utc) + SIDE_CHANNEL_TTL

    claims = token_issuer.validate(issued.token, TokenKind.RESET)
    assert claims.email == "a@example.com"
    assert claims.expires_at is None
    assert "exp" not in jwt.decode(issued.token, options={"verify_signature": False})


def test_side_channel_tokens_are_unique(token_issuer):
    assert token_issuer.issue_verify_token("a@example.com").token != token_issuer.issue_verify_token("a@example.com").token


def test_empty_secret_is_rejected():
    with pytest.raises(ValueError):
        TokenIssuer("", issuer="test", access_ttl_seconds=60, refresh_ttl_seconds=60)
