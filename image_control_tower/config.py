"""
Configuration management for Image Control Tower.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = Field(default="Image Control Tower")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./image_control_tower.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    # Import controller
    import_timeout_seconds: float = Field(default=60.0, gt=0)
    max_concurrent_imports: int = Field(default=5, ge=1)
    scheduled_import_interval_seconds: float = Field(default=900.0, gt=0)
    reconcile_max_retries: int = Field(default=5, ge=0)
    registry_default_host: str = Field(default="registry-1.docker.io")
    controller_enabled: bool = Field(
        default=True, description="Run the import controller inside the API process"
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
