"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables prefixed with
``PRODMET_``, with support for .env files via python-dotenv.
"""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Analytics engine settings."""

    model_config = SettingsConfigDict(env_prefix="PRODMET_", extra="ignore")

    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy URL of the event store"
    )
    demo_project_id: str = Field(
        default="demo", description="Project id served from the fixture dataset"
    )
    default_range_days: int = Field(default=30, ge=1, description="Default query window in days")
    fetch_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout applied to upstream fetch calls"
    )
    demo_comparison_factor: float = Field(
        default=0.85, gt=0, description="Scale applied to demo totals for the prior window"
    )
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache
def get_settings() -> Settings:
    """Settings are loaded once and cached for subsequent calls."""
    return Settings()
