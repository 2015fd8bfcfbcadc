import jwt
import pytest

from app.exceptions import TokenExpired, TokenInvalid
from app.models import TokenKind

from conftest import TEST_SECRET, build_token_service


def test_issue_verify_round_trip(tokens):
    pair = tokens.issue("user-1", "broker")
    claims = tokens.verify(pair.access_token)
    assert claims["sub"] == "user-1"
    assert claims["role"] == "broker"
    assert claims["type"] == "access"
    assert claims["jti"]

    refresh_claims = tokens.verify(pair.refresh_token, TokenKind.REFRESH)
    assert "role" not in refresh_claims
    assert tokens.token_store.get(refresh_claims["jti"]).active_role == "broker"


def test_refresh_token_is_not_an_access_token(tokens):
    pair = tokens.issue("user-1", "broker")
    with pytest.raises(TokenInvalid):
        tokens.verify(pair.refresh_token)
    with pytest.raises(TokenInvalid):
        tokens.verify(pair.access_token, TokenKind.REFRESH)


def test_expired_token(session):
    svc = build_token_service(session, access_ttl_seconds=-5)
    pair = svc.issue("user-1", "broker")
    with pytest.raises(TokenExpired):
        svc.verify(pair.access_token)


def test_tampered_or_foreign_tokens_rejected(tokens):
    pair = tokens.issue("user-1", "broker")
    with pytest.raises(TokenInvalid):
        tokens.verify(pair.access_token[:-2] + "xx")
    forged = jwt.encode({"sub": "user-1", "role": "admin", "type": "access"}, "other-secret", algorithm="HS256")
    with pytest.raises(TokenInvalid):
        tokens.verify(forged)
    with pytest.raises(TokenInvalid):
        tokens.verify("not-a-jwt")


def test_missing_claims_rejected(tokens):
    incomplete = jwt.encode({"sub": "user-1", "type": "access", "role": "broker"}, TEST_SECRET, algorithm="HS256")
    with pytest.raises(TokenInvalid):
        tokens.verify(incomplete)


def test_rotation_revokes_old_refresh_token(tokens):
    pair = tokens.issue("user-1", "broker")
    record, next_jti = tokens.rotate(pair.refresh_token)
    assert record.active_role == "broker"
    new_pair = tokens.issue("user-1", "broker", refresh_jti=next_jti)
    assert tokens.verify(new_pair.refresh_token, TokenKind.REFRESH)["jti"] == next_jti

    old = tokens.token_store.get(record.jti)
    assert old.revoked_at is not None
    assert old.replaced_by == next_jti


def test_reuse_of_rotated_token_revokes_everything(tokens):
    pair = tokens.issue("user-1", "broker")
    other = tokens.issue("user-1", "developer")
    _, next_jti = tokens.rotate(pair.refresh_token)
    tokens.issue("user-1", "broker", refresh_jti=next_jti)

    with pytest.raises(TokenInvalid):
        tokens.rotate(pair.refresh_token)
    # the unrelated session is gone too
    with pytest.raises(TokenInvalid):
        tokens.rotate(other.refresh_token)
    assert tokens.token_store.get(next_jti).revoked_at is not None


def test_selection_token_single_use(tokens):
    token = tokens.issue_selection_token("user-1", ["broker", "developer"])
    claims = tokens.consume_selection_token(token)
    assert claims["roles"] == ["broker", "developer"]
    with pytest.raises(TokenInvalid):
        tokens.consume_selection_token(token)


def test_revoke_refresh_checks_owner(tokens):
    pair = tokens.issue("user-1", "broker")
    with pytest.raises(TokenInvalid):
        tokens.revoke_refresh(pair.refresh_token, "user-2")
    assert tokens.revoke_refresh(pair.refresh_token, "user-1") is True
    assert tokens.revoke_refresh(pair.refresh_token, "user-1") is False
