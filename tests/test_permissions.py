from __future__ import annotations

import pytest

from scriptshare.errors import PermissionDeniedError
from scriptshare.models import SystemConfig, SystemSettings, User, UserPermissions, UserRole
from scriptshare.permissions import (
    GUEST,
    Actor,
    Permission,
    PermissionPolicy,
    default_permissions,
    has_permission,
)


def _member(**permissions: bool) -> User:
    return User(
        id="2",
        name="Member",
        email="member@example.com",
        permissions=UserPermissions(**permissions),
    )


def _admin() -> User:
    # Deliberately empty bag: the role alone grants everything.
    return User(
        id="1",
        name="Admin",
        email="admin@example.com",
        role=UserRole.ADMIN,
        permissions=UserPermissions(
            can_view_scripts=False, can_download_scripts=False, can_upload_scripts=False
        ),
    )


def test_default_permissions_by_role() -> None:
    admin_bag = default_permissions(UserRole.ADMIN)
    user_bag = default_permissions()

    assert admin_bag.can_manage_users and admin_bag.can_delete_scripts
    assert user_bag.can_upload_scripts
    assert not user_bag.can_approve_scripts


def test_admin_role_implies_every_permission() -> None:
    admin = _admin()

    assert all(has_permission(admin, permission) for permission in Permission)


def test_guest_may_only_view_and_download() -> None:
    assert GUEST.has(Permission.VIEW)
    assert GUEST.has(Permission.DOWNLOAD)
    assert not GUEST.has(Permission.UPLOAD)


def test_require_distinguishes_guests_from_signed_in_users() -> None:
    policy = PermissionPolicy()

    with pytest.raises(PermissionDeniedError) as guest_error:
        policy.require(GUEST, Permission.DELETE, action="delete scripts")
    assert guest_error.value.requires_login

    with pytest.raises(PermissionDeniedError) as member_error:
        policy.require(Actor(user=_member()), Permission.DELETE, action="delete scripts")
    assert not member_error.value.requires_login

    policy.require(
        Actor(user=_member(can_delete_scripts=True)),
        Permission.DELETE,
        action="delete scripts",
    )


def test_disabled_policy_allows_everything() -> None:
    policy = PermissionPolicy(enforce=False)

    policy.require(GUEST, Permission.MANAGE_USERS, action="manage users")
    policy.require_admin(GUEST, action="review all scripts")
    policy.require_upload(GUEST)


def test_upload_rules() -> None:
    policy = PermissionPolicy()

    with pytest.raises(PermissionDeniedError) as guest_error:
        policy.require_upload(GUEST)
    assert guest_error.value.requires_login

    PermissionPolicy(allow_anonymous_uploads=True).require_upload(GUEST)

    blocked = _member().model_copy(update={"can_upload": False})
    with pytest.raises(PermissionDeniedError):
        policy.require_upload(Actor(user=blocked))

    with pytest.raises(PermissionDeniedError):
        policy.require_upload(Actor(user=_member(can_upload_scripts=False)))

    policy.require_upload(Actor(user=_member()))


def test_status_changes_need_approve_permission() -> None:
    policy = PermissionPolicy()
    member = Actor(user=_member())

    policy.require_script_update(member, {"likes"})
    with pytest.raises(PermissionDeniedError):
        policy.require_script_update(member, {"status"})
    with pytest.raises(PermissionDeniedError):
        policy.require_script_update(GUEST, {"downloads"})

    policy.require_script_update(Actor(user=_member(can_approve_scripts=True)), {"status"})


def test_users_may_edit_their_own_profile_only() -> None:
    policy = PermissionPolicy()
    member = Actor(user=_member())

    policy.require_user_update(member, "2", {"name", "email"})
    with pytest.raises(PermissionDeniedError):
        policy.require_user_update(member, "2", {"role"})
    with pytest.raises(PermissionDeniedError):
        policy.require_user_update(member, "3", {"name"})

    policy.require_user_update(Actor(user=_admin()), "3", {"role", "permissions"})


def test_config_replacement_rules() -> None:
    policy = PermissionPolicy()
    current = SystemConfig(available_tags=["Mystery"])
    new_tags = current.model_copy(update={"available_tags": ["Mystery", "Horror"]})
    new_settings = current.model_copy(
        update={"system_settings": SystemSettings(allow_user_registration=False)}
    )
    tag_manager = Actor(user=_member(can_manage_tags=True))

    policy.require_config_replace(tag_manager, current, new_tags)
    with pytest.raises(PermissionDeniedError):
        policy.require_config_replace(tag_manager, current, new_settings)
    with pytest.raises(PermissionDeniedError):
        policy.require_config_replace(Actor(user=_member()), current, new_tags)

    policy.require_config_replace(Actor(user=_admin()), current, new_settings)
