"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (MySQL-protocol) ──────────────────────────────────────────
    db_host: str = "mysql"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "tunesync"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    # Full SQLAlchemy URL; overrides the host/port fields above when set
    db_url_override: str = ""

    @property
    def database_url(self) -> str:
        if self.db_url_override:
            return self.db_url_override
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_socket_timeout: float = 5.0
    redis_scan_count: int = 500          # COUNT hint for SCAN during discovery
    redis_watch_retries: int = 10        # optimistic transaction attempts

    # ── Like sync pipeline ─────────────────────────────────────────────────
    sync_interval_seconds: float = 60.0  # one tick per minute
    sync_batch_size: int = 1000          # keys per FlushBatch
    sync_concurrency_limit: int = 5      # keys in flight per batch
    flush_key_timeout_seconds: float = 10.0
    # Per-key exponential backoff after a failed flush; 0 disables it
    flush_backoff_base_seconds: float = 0.0
    flush_backoff_max_seconds: float = 600.0
    # Recompute the parent song's comment_count when a comment's likes flush
    sync_comment_counts: bool = True

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    otel_enabled: bool = True
    service_name: str = "tunesync-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
