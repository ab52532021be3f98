from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import StartupConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="PDF Render Service", description="Application name")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Redis; TESTING=1 swaps in the in-memory client
    testing: bool = Field(default=False, description="Use in-memory Redis")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # Tickets
    ticket_secret: str = Field(default="", description="HMAC secret for one-time tickets")
    ticket_ttl: int = Field(default=60, description="Ticket lifetime in seconds")
    ticket_replay_grace: int = Field(
        default=5, description="Extra seconds a consumed ticket id is remembered"
    )

    # Dedup / caches
    dedup_window: int = Field(default=60, description="Request dedup window in seconds")
    result_cache_ttl: int = Field(default=60, description="Sync render cache TTL in seconds")

    # Storage and queue
    payload_container: str = Field(default="pdfpayloads")
    pdf_container: str = Field(default="generated-pdfs")
    queue_name: str = Field(default="pdf-jobs")

    # Worker
    worker_concurrency: int = Field(default=3, ge=1, description="Concurrent render slots")
    max_delivery_count: int = Field(default=10, ge=1, description="Deliveries before dead-letter")
    lock_duration: float = Field(default=300.0, description="Message lease in seconds")
    render_timeout: float = Field(default=120.0, description="Render deadline in seconds")
    worker_poll_seconds: float = Field(default=0.5)
    reaper_poll_seconds: float = Field(default=5.0)

    # Rendering
    scripts_dir: Path = Field(default=Path("templates"), description="Template scripts")
    playwright_headless: bool = Field(default=True)

    def validate_startup(self) -> None:
        """Fail fast when required secrets are absent."""
        if not self.ticket_secret:
            raise StartupConfigError("TICKET_SECRET env var missing")


settings = Settings()


def get_settings() -> Settings:
    return settings
