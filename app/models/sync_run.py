"""Sync run model"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Integer, String
from datetime import datetime
import enum
from app.models.base import Base


class SyncRunStatus(str, enum.Enum):
    """Sync run status enumeration"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRun(Base):
    """Record of one sync run"""

    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)

    # Options
    direction = Column(String, nullable=False, default="both")
    dry_run = Column(Boolean, default=False)

    # Counters
    created = Column(Integer, default=0)
    updated_target = Column(Integer, default=0)
    updated_source = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    error_count = Column(Integer, default=0)

    # [{"source_id", "title", "message"}] and log lines
    errors = Column(JSON, default=list)
    logs = Column(JSON, default=list)

    status = Column(Enum(SyncRunStatus), nullable=False, default=SyncRunStatus.RUNNING)

    # Timestamps
    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncRun(tenant_id='{self.tenant_id}', status={self.status})>"
