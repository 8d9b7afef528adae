"""Tenant sync configuration endpoints"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.deps import get_runner, http_error
from app.models import SyncConfig
from app.models.base import get_db
from app.scheduler import scheduler
from app.services.run_sync import SyncRunner, resolve_config
from app.services.sync_types import SyncDirection

router = APIRouter(prefix="/api/configs", tags=["configs"])

# Accepted on write, never returned.
SECRET_FIELDS = (
    "notion_token",
    "ado_pat",
    "ado_oauth_access_token",
    "ado_oauth_refresh_token",
)


class SyncConfigUpdate(BaseModel):
    notion_token: Optional[str] = None
    notion_database_ids: Optional[List[str]] = None

    ado_auth_type: Optional[Literal["pat", "oauth"]] = None
    ado_pat: Optional[str] = None
    ado_org_url: Optional[str] = None
    ado_project: Optional[str] = None
    ado_oauth_access_token: Optional[str] = None
    ado_oauth_refresh_token: Optional[str] = None
    ado_oauth_expires_at: Optional[datetime] = None

    target_work_item_type: Optional[str] = None
    target_child_work_item_type: Optional[str] = None
    target_initial_state: Optional[str] = None
    target_area_path: Optional[str] = None
    target_work_type: Optional[str] = None
    target_work_type_field: Optional[str] = None

    status_mapping: Optional[Dict[str, str]] = None
    reverse_status_mapping: Optional[Dict[str, str]] = None
    assignee_mapping: Optional[Dict[str, str]] = None
    reverse_assignee_mapping: Optional[Dict[str, str]] = None
    default_target_state: Optional[str] = None
    default_source_status: Optional[str] = None

    source_status_property: Optional[str] = None
    source_assignee_property: Optional[str] = None
    source_description_property: Optional[str] = None
    source_target_id_property: Optional[str] = None
    source_target_url_property: Optional[str] = None
    source_subtask_property: Optional[str] = None

    sync_direction: Optional[SyncDirection] = None
    schedule_enabled: Optional[bool] = None
    sync_interval_minutes: Optional[int] = Field(default=None, ge=1)
    schedule_type: Optional[Literal["interval", "hourly", "daily"]] = None
    schedule_hour: Optional[int] = Field(default=None, ge=0, le=23)
    schedule_minute: Optional[int] = Field(default=None, ge=0, le=59)


class SyncConfigResponse(BaseModel):
    tenant_id: str
    notion_database_ids: List[str] = []
    has_notion_token: bool = False

    ado_auth_type: str
    ado_org_url: Optional[str] = None
    ado_project: Optional[str] = None
    has_ado_pat: bool = False
    ado_oauth_connected: bool = False
    ado_oauth_expires_at: Optional[datetime] = None

    target_work_item_type: Optional[str] = None
    target_child_work_item_type: Optional[str] = None
    target_initial_state: Optional[str] = None
    target_area_path: Optional[str] = None
    target_work_type: Optional[str] = None
    target_work_type_field: Optional[str] = None

    status_mapping: Dict[str, str] = {}
    reverse_status_mapping: Dict[str, str] = {}
    assignee_mapping: Dict[str, str] = {}
    reverse_assignee_mapping: Dict[str, str] = {}
    default_target_state: Optional[str] = None
    default_source_status: Optional[str] = None

    source_status_property: Optional[str] = None
    source_assignee_property: Optional[str] = None
    source_description_property: Optional[str] = None
    source_target_id_property: Optional[str] = None
    source_target_url_property: Optional[str] = None
    source_subtask_property: Optional[str] = None

    sync_direction: Optional[str] = None
    schedule_enabled: bool = False
    sync_interval_minutes: Optional[int] = None
    schedule_type: Optional[str] = None
    schedule_hour: Optional[int] = None
    schedule_minute: Optional[int] = None
    updated_at: Optional[datetime] = None


def _to_response(config: SyncConfig) -> SyncConfigResponse:
    public = {
        name: getattr(config, name)
        for name in SyncConfigResponse.model_fields
        if hasattr(config, name) and getattr(config, name) is not None
    }
    return SyncConfigResponse(
        **public,
        has_notion_token=bool(config.notion_token),
        has_ado_pat=bool(config.ado_pat),
        ado_oauth_connected=bool(config.ado_oauth_access_token),
    )


def _get_config(db: Session, tenant_id: str) -> SyncConfig:
    config = db.query(SyncConfig).filter(SyncConfig.tenant_id == tenant_id).first()
    if not config:
        raise HTTPException(status_code=404, detail="Sync configuration not found")
    return config


@router.get("/{tenant_id}", response_model=SyncConfigResponse)
def get_config(tenant_id: str, db: Session = Depends(get_db)):
    """Get a tenant's sync configuration (secrets omitted)"""
    return _to_response(_get_config(db, tenant_id))


@router.put("/{tenant_id}", response_model=SyncConfigResponse)
def save_config(tenant_id: str, update: SyncConfigUpdate, db: Session = Depends(get_db)):
    """Create or update a tenant's sync configuration. Omitted fields are left unchanged."""
    config = db.query(SyncConfig).filter(SyncConfig.tenant_id == tenant_id).first()
    if config is None:
        config = SyncConfig(tenant_id=tenant_id)
        db.add(config)

    for key, value in update.model_dump(exclude_unset=True).items():
        if key in SECRET_FIELDS and value == "":
            # Blank secret means "clear it"
            value = None
        if isinstance(value, SyncDirection):
            value = value.value
        setattr(config, key, value)

    db.commit()
    db.refresh(config)
    scheduler.apply_config(config)
    return _to_response(config)


@router.post("/{tenant_id}/test")
def test_config(
    tenant_id: str,
    db: Session = Depends(get_db),
    runner: SyncRunner = Depends(get_runner),
):
    """Check both connections with the saved configuration"""
    try:
        config = resolve_config(db, tenant_id)
        access_token = None
        if config.ado_auth_type == "oauth":
            access_token = runner.token_resolver(db, tenant_id)
        source, target, _ = runner.adapter_factory(config, access_token)
    except Exception as e:
        raise http_error(e)

    try:
        return {"notion": source.test_connection(), "ado": target.test_connection()}
    finally:
        for adapter in (source, target):
            close = getattr(adapter, "close", None)
            if callable(close):
                close()
