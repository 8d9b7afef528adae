"""Services"""

from app.services.ado_client import AdoClient
from app.services.notion_client import NotionClient
from app.services.run_sync import SyncOptions, SyncRunner
from app.services.sync_service import SyncService

__all__ = ["AdoClient", "NotionClient", "SyncOptions", "SyncRunner", "SyncService"]
