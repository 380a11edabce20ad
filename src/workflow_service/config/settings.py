"""Service configuration settings."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    service_name: str = "case-workflow-service"
    environment: str = "development"
    port: int = 8003

    # Database configuration
    database_url: str = "sqlite+aiosqlite:///./workflow_cases.db"
    # "inmemory" for dev/testing, "sql" for the SQLAlchemy repositories
    storage_type: str = "inmemory"
    db_connect_retries: int = 3
    db_connect_backoff_seconds: float = 1.0

    # Pagination defaults
    default_page_size: int = 50
    max_page_size: int = 100

    # CORS configuration
    cors_origins: str = "*"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def uses_sql_storage(self) -> bool:
        """True when repositories should be backed by the database."""
        return self.storage_type.lower() in ("sql", "postgres", "sqlite")


# Global settings instance
settings = Settings()
