import pytest

from app.application.services.account_service import AccountService
from app.exceptions import NotFound, ValidationFailed
from app.models import ProfileStatus, Role, TokenKind

PHONE = "+14155550123"


@pytest.fixture
def accounts(users, tokens, audit):
    return AccountService(user_repo=users, tokens=tokens, audit=audit)


def test_suspend_requires_reason_and_revokes_tokens(accounts, users, tokens, audit):
    user = users.get_or_create(PHONE)
    pair = tokens.issue(user.id, "broker")
    with pytest.raises(ValidationFailed):
        accounts.suspend("admin-1", user.id, "  ")

    suspended = accounts.suspend("admin-1", user.id, "Chargeback")
    assert suspended.is_suspended
    assert suspended.suspension_reason == "Chargeback"
    jti = tokens.verify(pair.refresh_token, TokenKind.REFRESH)["jti"]
    assert tokens.token_store.get(jti).revoked_at is not None
    assert audit.entries[-1]["details"]["actor"] == "admin-1"

    lifted = accounts.unsuspend("admin-1", user.id)
    assert not lifted.is_suspended
    assert lifted.suspension_reason is None


def test_lock_unlock_resets_counter(accounts, users):
    user = users.get_or_create(PHONE)
    users.record_failed_login(user.id, threshold=10, lock_until=None)
    locked = accounts.lock("admin-1", user.id, 15)
    assert locked.locked_until is not None
    unlocked = accounts.unlock("admin-1", user.id)
    assert unlocked.locked_until is None
    assert unlocked.failed_attempts == 0
    with pytest.raises(ValidationFailed):
        accounts.lock("admin-1", user.id, 0)


def test_deactivate_and_reactivate(accounts, users):
    user = users.get_or_create(PHONE)
    assert accounts.deactivate("admin-1", user.id).is_active is False
    assert accounts.reactivate("admin-1", user.id).is_active is True


def test_unknown_targets(accounts):
    with pytest.raises(NotFound):
        accounts.unsuspend("admin-1", "missing")
    with pytest.raises(NotFound):
        accounts.set_profile_status("admin-1", "missing", ProfileStatus.SUSPENDED)


def test_profile_status_change(accounts, users):
    user = users.get_or_create(PHONE)
    profile = users.create_profile(user.id, Role.DEVELOPER, None, ProfileStatus.PENDING)
    updated = accounts.set_profile_status("admin-1", profile.id, ProfileStatus.ACTIVE)
    assert updated.status == ProfileStatus.ACTIVE
