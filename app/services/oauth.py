"""Azure DevOps OAuth token resolution"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models import SyncConfig
from app.services.errors import AuthError, ConfigurationError
from app.services.http_client import error_message

logger = logging.getLogger(__name__)

RECONNECT_MESSAGE = "Azure DevOps OAuth token expired or invalid. Please reconnect your ADO account."


def _utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime for DB + comparisons."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _needs_refresh(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is not None:
        expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
    return expires_at - now < timedelta(minutes=settings.token_refresh_window_minutes)


def _clear_oauth_state(db: Session, config: SyncConfig) -> None:
    # auth type stays "oauth" so the next run fails fast on the missing token
    config.ado_oauth_access_token = None
    config.ado_oauth_refresh_token = None
    config.ado_oauth_expires_at = None
    db.commit()


def refresh_token(
    db: Session,
    config: SyncConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    now: Optional[datetime] = None,
) -> str:
    """Exchange the stored refresh token for a new access token and persist both."""
    if not config.ado_oauth_refresh_token:
        raise AuthError(RECONNECT_MESSAGE)
    if not settings.oauth_client_id or not settings.oauth_client_secret:
        raise ConfigurationError("Azure DevOps OAuth client credentials are not configured")

    with httpx.Client(timeout=settings.http_timeout_seconds, transport=transport) as client:
        try:
            response = client.post(
                settings.oauth_token_url,
                data={
                    "client_id": settings.oauth_client_id,
                    "client_secret": settings.oauth_client_secret,
                    "refresh_token": config.ado_oauth_refresh_token,
                    "grant_type": "refresh_token",
                    "scope": settings.oauth_scope,
                },
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Azure DevOps token refresh failed: {e}") from e

    if not response.is_success:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("error") == "invalid_grant":
            logger.warning(f"Refresh token rejected for tenant {config.tenant_id}; clearing OAuth state")
            _clear_oauth_state(db, config)
            raise AuthError(RECONNECT_MESSAGE)
        raise AuthError(f"Azure DevOps token refresh failed: {error_message(response)}")

    tokens = response.json()
    now = now or _utcnow()
    config.ado_oauth_access_token = tokens["access_token"]
    # Microsoft may or may not rotate the refresh token.
    config.ado_oauth_refresh_token = tokens.get("refresh_token") or config.ado_oauth_refresh_token
    config.ado_oauth_expires_at = now + timedelta(seconds=int(tokens.get("expires_in", 3600)))
    db.commit()
    logger.info(f"Refreshed Azure DevOps OAuth token for tenant {config.tenant_id}")
    return config.ado_oauth_access_token


def resolve_token(
    db: Session,
    tenant_id: str,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Return a usable OAuth access token for the tenant.

    Refreshes (and persists) the token when it is expired or about to expire.
    Raises AuthError with a reconnect message when no usable credential remains.
    """
    config = db.query(SyncConfig).filter(SyncConfig.tenant_id == tenant_id).first()
    if config is None:
        raise ConfigurationError("Sync configuration not found. Please configure your sync settings first.")
    if config.ado_auth_type != "oauth":
        raise ConfigurationError(f"Tenant {tenant_id} does not use OAuth for Azure DevOps")
    if not config.ado_oauth_access_token:
        raise AuthError(RECONNECT_MESSAGE)

    now = now or _utcnow()
    if _needs_refresh(config.ado_oauth_expires_at, now):
        return refresh_token(db, config, transport=transport, now=now)
    return config.ado_oauth_access_token
