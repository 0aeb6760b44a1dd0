"""Server-side evaluation of user roles and permission bags."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Collection

from .errors import PermissionDeniedError
from .models import SystemConfig, User, UserPermissions, UserRole


class Permission(str, Enum):
    """Operations guarded by the per-user permission bag."""

    VIEW = "view"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    MANAGE_USERS = "manageUsers"
    MANAGE_TAGS = "manageTags"
    APPROVE = "approveScripts"
    DELETE = "deleteScripts"


_PERMISSION_FIELDS: dict[Permission, str] = {
    Permission.VIEW: "can_view_scripts",
    Permission.DOWNLOAD: "can_download_scripts",
    Permission.UPLOAD: "can_upload_scripts",
    Permission.MANAGE_USERS: "can_manage_users",
    Permission.MANAGE_TAGS: "can_manage_tags",
    Permission.APPROVE: "can_approve_scripts",
    Permission.DELETE: "can_delete_scripts",
}

GUEST_PERMISSIONS: frozenset[Permission] = frozenset(
    {Permission.VIEW, Permission.DOWNLOAD}
)

# Fields a user may change on their own record without manageUsers.
SELF_EDITABLE_USER_FIELDS: frozenset[str] = frozenset({"name", "email"})


def default_permissions(role: UserRole = UserRole.USER) -> UserPermissions:
    """Return the permission bag granted to new users of ``role``."""

    if role is UserRole.ADMIN:
        return UserPermissions(**{field: True for field in _PERMISSION_FIELDS.values()})
    return UserPermissions()


def has_permission(user: User, permission: Permission) -> bool:
    if user.is_admin:
        return True
    return bool(getattr(user.permissions, _PERMISSION_FIELDS[permission]))


@dataclass(frozen=True)
class Actor:
    """The caller of an operation: an authenticated user or a guest."""

    user: User | None = None

    @property
    def is_guest(self) -> bool:
        return self.user is None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.is_admin

    @property
    def label(self) -> str:
        return "guest" if self.user is None else f"user '{self.user.id}'"

    def has(self, permission: Permission) -> bool:
        if self.user is None:
            return permission in GUEST_PERMISSIONS
        return has_permission(self.user, permission)


GUEST = Actor()


class PermissionPolicy:
    """Decide whether an actor may perform each guarded operation.

    With ``enforce`` disabled every check passes, reproducing a deployment
    that trusts its clients.
    """

    def __init__(self, *, enforce: bool = True, allow_anonymous_uploads: bool = False) -> None:
        self.enforce = enforce
        self.allow_anonymous_uploads = allow_anonymous_uploads

    def require(self, actor: Actor, permission: Permission, *, action: str) -> None:
        if not self.enforce or actor.has(permission):
            return
        raise PermissionDeniedError(
            f"The {actor.label} is not permitted to {action}.",
            requires_login=actor.is_guest,
        )

    def require_authenticated(self, actor: Actor, *, action: str) -> None:
        if not self.enforce or not actor.is_guest:
            return
        raise PermissionDeniedError(f"Sign in to {action}.", requires_login=True)

    def require_admin(self, actor: Actor, *, action: str) -> None:
        self.require_authenticated(actor, action=action)
        if not self.enforce or actor.is_admin:
            return
        raise PermissionDeniedError(f"Only administrators may {action}.")

    def require_upload(self, actor: Actor) -> None:
        if not self.enforce:
            return
        if actor.user is None:
            if self.allow_anonymous_uploads:
                return
            raise PermissionDeniedError("Sign in to upload scripts.", requires_login=True)
        if not actor.user.can_upload:
            raise PermissionDeniedError(f"The {actor.label} has uploads disabled.")
        self.require(actor, Permission.UPLOAD, action="upload scripts")

    def require_script_update(self, actor: Actor, fields: Collection[str]) -> None:
        """Status changes are moderation; counter updates need a signed-in user."""

        if "status" in fields:
            self.require_authenticated(actor, action="change script status")
            self.require(actor, Permission.APPROVE, action="change script status")
        if {"likes", "downloads"} & set(fields):
            self.require_authenticated(actor, action="update script counters")

    def require_user_update(
        self, actor: Actor, target_id: str, fields: Collection[str]
    ) -> None:
        self.require_authenticated(actor, action="update users")
        if (
            actor.user is not None
            and actor.user.id == target_id
            and set(fields) <= SELF_EDITABLE_USER_FIELDS
        ):
            return
        self.require(actor, Permission.MANAGE_USERS, action="update users")

    def require_config_replace(
        self, actor: Actor, current: SystemConfig, replacement: SystemConfig
    ) -> None:
        """Tag edits need manageTags; changing system settings needs an admin."""

        self.require_authenticated(actor, action="change the configuration")
        if current.system_settings != replacement.system_settings:
            self.require_admin(actor, action="change system settings")
        if current.available_tags != replacement.available_tags:
            self.require(actor, Permission.MANAGE_TAGS, action="change available tags")


__all__ = [
    "Actor",
    "GUEST",
    "GUEST_PERMISSIONS",
    "Permission",
    "PermissionPolicy",
    "SELF_EDITABLE_USER_FIELDS",
    "default_permissions",
    "has_permission",
]
