"""Shared API dependencies"""
from fastapi import HTTPException

from app.services import run_sync
from app.services.errors import (
    AuthError,
    ConfigurationError,
    SyncAlreadyRunningError,
)
from app.services.run_sync import SyncRunner


def get_runner() -> SyncRunner:
    """Sync runner used by the endpoints (overridable in tests)"""
    return run_sync.sync_runner


def http_error(exc: Exception) -> HTTPException:
    """Translate a sync failure into an HTTP error"""
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, SyncAlreadyRunningError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
