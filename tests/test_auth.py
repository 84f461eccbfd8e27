"""Tests for accounts, API keys and role checks."""

import pytest

from vigil.auth.models import Role, User
from vigil.auth.permissions import has_permission, require_role
from vigil.auth.store import UserStore
from vigil.errors import AuthenticationError, PermissionDeniedError


def test_role_hierarchy():
    admin = User(id="a", role=Role.admin)
    guard = User(id="g", role="guard")
    assert has_permission(admin, Role.company)
    assert has_permission(guard, Role.company)
    assert not has_permission(guard, Role.admin)
    with pytest.raises(PermissionDeniedError):
        require_role(guard, Role.admin)


def test_unknown_role_falls_back_to_default():
    assert User(id="x", role="superuser").role is Role.default


def test_suspended_user_has_no_permissions():
    admin = User(id="a", role=Role.admin, suspended=True)
    assert not has_permission(admin, Role.default)


def test_suspend_is_idempotent(tmp_path, clock):
    store = UserStore(tmp_path, clock=clock)
    store.save_user(User(id="g1", role=Role.guard))

    assert store.suspend_user("g1", "threat", "automatic") is True
    clock.advance(minutes=5)
    assert store.suspend_user("g1", "again", "manual") is False

    user = store.get_user("g1")
    assert user.suspended
    assert user.suspension_reason == "threat"
    assert user.suspension_type == "automatic"


def test_suspend_unknown_user_creates_record(tmp_path, clock):
    store = UserStore(tmp_path, clock=clock)
    assert store.suspend_user("ghost", "threat")
    assert store.get_user("ghost").suspended


def test_reinstate_and_role_change(tmp_path, clock):
    store = UserStore(tmp_path, clock=clock)
    store.save_user(User(id="g1", role=Role.guard))
    store.suspend_user("g1", "threat")

    user = store.reinstate_user("g1")
    assert not user.suspended
    assert user.suspension_reason == ""
    assert store.reinstate_user("nobody") is None

    assert store.update_user_role("g1", Role.company).role is Role.company
    assert store.update_user_role("nobody", Role.admin) is None
    assert [u.id for u in store.list_users()] == ["g1"]


def test_api_key_lifecycle(tmp_path, clock):
    store = UserStore(tmp_path, clock=clock)
    store.save_user(User(id="g1", role=Role.guard))
    api_key, raw = store.create_api_key("g1", "ci", expires_in_days=1)

    assert raw.startswith("vgl_")
    assert api_key.prefix == raw[:8]
    assert store.validate_api_key(raw).id == "g1"
    assert store.validate_api_key("vgl_bogus") is None
    assert store.list_api_keys("g1")[0].last_used == clock().isoformat()

    clock.advance(days=1, seconds=1)
    assert store.validate_api_key(raw) is None

    assert store.delete_api_key(api_key.id)
    assert not store.delete_api_key(api_key.id)
    assert store.list_api_keys("g1") == []


def test_engine_authenticate(engine):
    engine.users.save_user(User(id="g1", role=Role.guard))
    _, raw = engine.users.create_api_key("g1", "test")

    assert engine.authenticate(raw).id == "g1"
    with pytest.raises(AuthenticationError):
        engine.authenticate(None)
    with pytest.raises(AuthenticationError):
        engine.authenticate("vgl_bogus")

    engine.users.suspend_user("g1", "manual review", "manual")
    with pytest.raises(PermissionDeniedError):
        engine.authenticate(raw)


def test_assessment_requires_identity(engine):
    with pytest.raises(AuthenticationError):
        engine.trigger_security_assessment(None)
    with pytest.raises(PermissionDeniedError):
        engine.trigger_security_assessment(User(id="g1", role=Role.guard))
