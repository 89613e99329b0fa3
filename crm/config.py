"""
Configuration and settings for the CRM backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Which CustomerStore implementation backs the service.
    storage_backend: Literal["memory", "relational", "document"] = Field(
        default="memory"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Relational backend (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Document backend (MongoDB)
    mongodb_uri: Optional[str] = Field(default=None)
    mongodb_db_name: str = Field(default="crm")
    mongodb_server_selection_timeout_ms: int = Field(default=5000, ge=1)
    mongodb_socket_timeout_ms: int = Field(default=45000, ge=1)

    # Identity is asserted by the authentication proxy in front of the API.
    auth_user_header: str = Field(default="X-User-Id")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
