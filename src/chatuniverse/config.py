"""
Chat Universe Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for chatuniverse logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/chatuniverse if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/chatuniverse if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "chatuniverse" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "chatuniverse" / "logs")

    # Fallback for development/testing environments without HOME
    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_db: str = "chatuniverse"
    postgres_user: str = "chatuniverse"
    postgres_password: str = "chatuniverse_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
    )  # Full URL (e.g. sqlite:///universe.db) wins over the postgres_* parts

    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # OpenAI (query embeddings for hybrid search)
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"

    # Hybrid search
    search_fts_weight: float = 0.6
    search_semantic_weight: float = 0.4
    search_enforce_parity: bool = True  # Drop semantic hits unknown to SQL store

    # Intake
    intake_directory: str = "intake"
    intake_report_directory: str = "intake/reports"
    intake_file_limit: int = 5000
    intake_max_file_bytes: int = 25 * 1024 * 1024  # 25MB
    intake_sample_scan_bytes: int = 2 * 1024 * 1024  # Content scanned for secrets

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to the XDG state dir when empty
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True  # Enable console (stdout/stderr) logging
    log_file_enabled: bool = True  # Enable file-based logging
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5  # Keep 5 backup files
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
