"""FastAPI application exposing the script sharing endpoints."""

from .app import create_app
from .settings import ScriptShareSettings

__all__ = ["create_app", "ScriptShareSettings"]
