"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./worksync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Sync
    # Fixed pause after every processed item (Notion allows ~3 requests/second).
    sync_item_delay_seconds: float = 0.35
    default_sync_interval_minutes: int = 60
    http_timeout_seconds: float = 30.0
    # Upper bound for a server supplied Retry-After.
    http_max_retry_delay_seconds: float = 30.0

    # Notion (source)
    notion_api_url: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"

    # Azure DevOps OAuth (target)
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    oauth_token_url: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    oauth_scope: str = "499b84ac-1321-427f-aa17-267ca6975798/user_impersonation offline_access"
    token_refresh_window_minutes: int = 5

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
