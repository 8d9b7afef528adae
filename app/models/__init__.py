"""Database models"""

from app.models.base import Base
from app.models.sync_config import SyncConfig
from app.models.sync_run import SyncRun, SyncRunStatus

__all__ = [
    "Base",
    "SyncConfig",
    "SyncRun",
    "SyncRunStatus",
]
