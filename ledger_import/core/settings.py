"""Configuration and environment settings for the ledger importer."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the ledger importer."""

    database_url: str = "sqlite+aiosqlite:///jobs/ledger_import.db"
    batch_size: int = 100
    progress_every_batches: int = 5
    preview_rows: int = 5
    list_jobs_limit: int = 20
    job_retention_hours: int = 24
    cleanup_interval_minutes: int = 60
    log_file: str = "jobs/ledger_import.log"
    log_level: str = "INFO"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
