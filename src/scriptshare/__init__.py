"""Core package for the script sharing platform."""

from .errors import (
    InvalidScriptJsonError,
    LoginFailedError,
    PermissionDeniedError,
    QuotaExceededError,
    RecordNotFoundError,
    ScriptValidationError,
    StorageError,
)
from .models import (
    Script,
    ScriptStatus,
    SystemConfig,
    SystemSettings,
    User,
    UserPermissions,
    UserRole,
)
from .permissions import Actor, Permission, PermissionPolicy
from .storage import (
    ConfigRepository,
    DocumentStore,
    FileDocumentStore,
    InMemoryDocumentStore,
    ScriptRepository,
    UserRepository,
)

__all__ = [
    "Actor",
    "ConfigRepository",
    "DocumentStore",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "InvalidScriptJsonError",
    "LoginFailedError",
    "Permission",
    "PermissionDeniedError",
    "PermissionPolicy",
    "QuotaExceededError",
    "RecordNotFoundError",
    "Script",
    "ScriptRepository",
    "ScriptStatus",
    "ScriptValidationError",
    "StorageError",
    "SystemConfig",
    "SystemSettings",
    "User",
    "UserPermissions",
    "UserRepository",
    "UserRole",
]
