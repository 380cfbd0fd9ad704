from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., the Anthropic client).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./dashboard_etl.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    INTERNAL_API_TOKEN: str | None = None

    AIRCALL_BASE_URL: str = "https://api.aircall.io"
    AIRCALL_API_ID: str | None = None
    AIRCALL_API_TOKEN: str | None = None
    AIRCALL_WEBHOOK_TOKEN: str | None = None

    WHATCONVERTS_BASE_URL: str = "https://app.whatconverts.com/api/v1"
    WHATCONVERTS_API_KEY: str | None = None
    WHATCONVERTS_WEBHOOK_TOKEN: str | None = None

    ISN_BASE_URL: str = "https://api.inspectionsupport.net"
    ISN_API_KEY: str | None = None
    ISN_COMPANY_KEY: str | None = None
    ISN_WEBHOOK_TOKEN: str | None = None

    ELEVENLABS_BASE_URL: str = "https://api.elevenlabs.io"
    ELEVENLABS_API_KEY: str | None = None

    CONNECTOR_TIMEOUT_SECONDS: float = 30.0
    CONNECTOR_PAGE_SIZE: int = 100
    CONNECTOR_MAX_PAGES: int = 20
    # Bounds a whole source pull (every page and endpoint), on top of the per-request timeout.
    SOURCE_FETCH_TIMEOUT_SECONDS: float = 600.0

    # When a webhook secret is not configured the receiver rejects every delivery
    # unless this is explicitly enabled.
    WEBHOOK_ALLOW_UNCONFIGURED_SECRET: bool = False

    ETL_RUN_STALE_AFTER_SECONDS: int = 60 * 60 * 2
    METRICS_CACHE_TTL_SECONDS: float = 30.0
    METRICS_WINDOW_DAYS: int = 7
    KPI_STREAM_INTERVAL_SECONDS: float = 30.0

    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-20241022"
    CHAT_MAX_TOKENS: int = 4096
    CHAT_LIVE_WINDOW_HOURS: int = 24

    TEMPORAL_ADDRESS: str = "localhost:7233"
    TEMPORAL_NAMESPACE: str = "default"
    TEMPORAL_TASK_QUEUE: str = "dashboard-etl"
    NIGHTLY_SWEEP_SCHEDULE_ID: str = "dashboard-etl-nightly-sweep"
    NIGHTLY_SWEEP_CRON: str = "0 7 * * *"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
