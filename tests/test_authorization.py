from datetime import timedelta

import pytest

from app.application.services.authorization_service import AuthorizationService
from app.exceptions import (
    AccountDeactivated, AccountLocked, AccountSuspended, Forbidden,
    ProfileSuspended, TokenExpired, Unauthenticated,
)
from app.models import ProfileStatus, Role
from app.utils import utcnow

from conftest import build_token_service

PHONE = "+14155550123"


@pytest.fixture
def broker(users):
    user = users.get_or_create(PHONE)
    profile = users.create_profile(user.id, Role.BROKER, "Asha", ProfileStatus.ACTIVE)
    return user, profile


@pytest.fixture
def authz(tokens, users):
    return AuthorizationService(tokens=tokens, user_repo=users)


def test_authenticate_exposes_context(authz, tokens, users, broker):
    user, profile = broker
    users.create_profile(user.id, Role.DEVELOPER, None, ProfileStatus.ACTIVE)
    pair = tokens.issue(user.id, "broker")

    ctx = authz.authenticate(pair.access_token)
    assert ctx.user.id == user.id
    assert ctx.role == Role.BROKER
    assert ctx.active_profile.id == profile.id
    assert {p.role for p in ctx.profiles} == {Role.BROKER, Role.DEVELOPER}


def test_missing_or_bad_token(authz):
    with pytest.raises(Unauthenticated):
        authz.authenticate(None)
    with pytest.raises(Unauthenticated):
        authz.authenticate("garbage")


def test_expired_token(session, users, broker):
    user, _ = broker
    short = build_token_service(session, access_ttl_seconds=-1)
    authz = AuthorizationService(tokens=short, user_repo=users)
    with pytest.raises(TokenExpired):
        authz.authenticate(short.issue(user.id, "broker").access_token)


def test_unknown_user(authz, tokens):
    pair = tokens.issue("ghost", "broker")
    with pytest.raises(Unauthenticated):
        authz.authenticate(pair.access_token)


def test_suspended_account_rejected_with_valid_token(authz, tokens, users, broker):
    user, _ = broker
    pair = tokens.issue(user.id, "broker")
    users.set_suspension(user.id, True, "Fraud review")
    with pytest.raises(AccountSuspended) as exc:
        authz.authenticate(pair.access_token)
    assert exc.value.details == {"suspensionReason": "Fraud review"}


def test_locked_and_deactivated_accounts(authz, tokens, users, broker):
    user, _ = broker
    pair = tokens.issue(user.id, "broker")
    users.set_lock(user.id, utcnow() + timedelta(minutes=30))
    with pytest.raises(AccountLocked):
        authz.authenticate(pair.access_token)
    users.set_lock(user.id, None)
    users.set_active(user.id, False)
    with pytest.raises(AccountDeactivated):
        authz.authenticate(pair.access_token)


def test_suspended_profile_rejected(authz, tokens, users, broker):
    user, profile = broker
    pair = tokens.issue(user.id, "broker")
    users.set_profile_status(profile.id, ProfileStatus.SUSPENDED)
    with pytest.raises(ProfileSuspended):
        authz.authenticate(pair.access_token)


def test_role_not_owned(authz, tokens, broker):
    user, _ = broker
    pair = tokens.issue(user.id, "admin")
    with pytest.raises(Unauthenticated):
        authz.authenticate(pair.access_token)


def test_authorize_reports_required_and_actual_role(authz, tokens, broker):
    user, _ = broker
    ctx = authz.authenticate(tokens.issue(user.id, "broker").access_token)
    assert AuthorizationService.authorize(ctx, Role.BROKER, Role.DEVELOPER) is ctx
    with pytest.raises(Forbidden) as exc:
        AuthorizationService.authorize(ctx, Role.ADMIN)
    assert exc.value.status_code == 403
    assert exc.value.details == {"requiredRoles": ["admin"], "actualRole": "broker"}
