"""In-process registry of login sessions."""

from __future__ import annotations

import secrets
import threading

from fastapi import Depends
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer


class SessionRegistry:
    """Map opaque bearer tokens to user identifiers.

    Sessions live in process memory and end when the server restarts.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = user_id
        return token

    def resolve(self, token: str | None) -> str | None:
        if not token:
            return None
        with self._lock:
            return self._sessions.get(token)

    def revoke(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def revoke_user(self, user_id: str) -> int:
        """End every session of ``user_id`` and return how many were removed."""

        with self._lock:
            tokens = [token for token, owner in self._sessions.items() if owner == user_id]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)


bearer_scheme = HTTPBearer(
    auto_error=False,
    description="Session token returned by /api/login or /api/signup.",
)
session_header_scheme = APIKeyHeader(
    name="X-Session-Token",
    auto_error=False,
    description="Alternative header carrying the session token.",
)


def session_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    header_token: str | None = Depends(session_header_scheme),
) -> str | None:
    """Return the session token from a bearer header or ``X-Session-Token``."""

    if credentials is not None and credentials.credentials.strip():
        return credentials.credentials.strip()
    if header_token and header_token.strip():
        return header_token.strip()
    return None


__all__ = [
    "SessionRegistry",
    "bearer_scheme",
    "session_header_scheme",
    "session_token",
]
