"""API routes"""

from app.api import configs, sync

__all__ = ["configs", "sync"]
