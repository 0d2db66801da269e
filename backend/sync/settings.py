"""Client sync configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    model_config = {"env_prefix": "SYNC_"}

    api_url: str = Field(default="http://localhost:5000", min_length=1)
    socket_url: str | None = None  # falls back to api_url
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    # Single reconciliation interval shared by every collection binder.
    poll_interval_seconds: float = Field(default=15.0, gt=0)
    cache_path: str = Field(default="backend/data/cache.sqlite3", min_length=1)
    reconnect_attempts: int = Field(default=3, ge=0)
    reconnect_delay_seconds: float = Field(default=2.0, ge=0)
    reconnect_delay_max_seconds: float = Field(default=5.0, ge=0)
    audit_log_limit: int = Field(default=1000, ge=1)
    log_dir: str | None = None

    @property
    def resolved_socket_url(self) -> str:
        return self.socket_url or self.api_url
