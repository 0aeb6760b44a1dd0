"""Exception types raised by the script sharing services."""

from __future__ import annotations


class ScriptValidationError(ValueError):
    """Raised when an upload or mutation request is missing required data."""


class InvalidScriptJsonError(ScriptValidationError):
    """Raised when an uploaded script data file is not valid JSON."""


class RecordNotFoundError(LookupError):
    """Raised when a script, user or series identifier does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} '{identifier}' does not exist.")
        self.kind = kind
        self.identifier = identifier


class LoginFailedError(RuntimeError):
    """Raised when no user matches the supplied login email."""


class PermissionDeniedError(RuntimeError):
    """Raised when the acting user may not perform an operation."""

    def __init__(self, message: str, *, requires_login: bool = False) -> None:
        super().__init__(message)
        self.requires_login = requires_login


class QuotaExceededError(RuntimeError):
    """Raised when an upload would exceed a configured per-user quota."""

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class StorageError(RuntimeError):
    """Raised when a document or asset cannot be written to disk."""


__all__ = [
    "InvalidScriptJsonError",
    "LoginFailedError",
    "PermissionDeniedError",
    "QuotaExceededError",
    "RecordNotFoundError",
    "ScriptValidationError",
    "StorageError",
]
