"""Sync management endpoints"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.deps import get_runner, http_error
from app.models import SyncRun, SyncRunStatus
from app.models.base import get_db
from app.services.run_sync import SyncOptions, SyncRunner
from app.services.sync_types import SyncDirection

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRequest(BaseModel):
    direction: SyncDirection = SyncDirection.BOTH
    dry_run: bool = False
    # Only applies to not-yet-linked Notion items
    limit: Optional[int] = Field(default=None, ge=1)

    def to_options(self) -> SyncOptions:
        return SyncOptions(direction=self.direction, dry_run=self.dry_run, limit=self.limit)


class SyncRunResponse(BaseModel):
    id: int
    tenant_id: str
    direction: str
    dry_run: bool
    status: SyncRunStatus
    created: int = 0
    updated_target: int = 0
    updated_source: int = 0
    skipped: int = 0
    error_count: int = 0
    errors: List[Dict[str, Any]] = []
    logs: List[str] = []
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.post("/{tenant_id}/trigger")
def trigger_sync(
    tenant_id: str,
    request: Optional[SyncRequest] = None,
    runner: SyncRunner = Depends(get_runner),
):
    """Run a sync for a tenant and return the full result"""
    options = (request or SyncRequest()).to_options()
    try:
        result = runner.run(tenant_id, options)
    except Exception as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/{tenant_id}/stream")
async def stream_sync(
    tenant_id: str,
    http_request: Request,
    request: Optional[SyncRequest] = None,
    runner: SyncRunner = Depends(get_runner),
):
    """Run a sync for a tenant, streaming its events as server-sent events"""
    options = (request or SyncRequest()).to_options()
    try:
        stream = runner.stream(tenant_id, options)
    except Exception as e:
        raise http_error(e)

    async def event_source():
        try:
            while True:
                if await http_request.is_disconnected():
                    break
                event = await run_in_threadpool(stream.next_event)
                if event is None:
                    break
                yield f"data: {json.dumps(event)}\n\n"
        finally:
            # No-op once the run has finished; aborts it if the client went away.
            stream.cancel()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{tenant_id}/history", response_model=List[SyncRunResponse])
def list_sync_runs(tenant_id: str, limit: int = 20, db: Session = Depends(get_db)):
    """List a tenant's most recent sync runs"""
    runs = (
        db.query(SyncRun)
        .filter(SyncRun.tenant_id == tenant_id)
        .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        .limit(limit)
        .all()
    )
    return runs


@router.get("/runs/{run_id}", response_model=SyncRunResponse)
def get_sync_run(run_id: int, db: Session = Depends(get_db)):
    """Get a specific sync run"""
    run = db.query(SyncRun).filter(SyncRun.id == run_id).first()
    if not run:
        raise HTTPException(status_code=404, detail="Sync run not found")
    return run
