"""Application configuration for the pairing server and call client."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    room_code_min_length: int = Field(default=4, ge=1)
    room_code_max_length: int = Field(default=32, ge=1)
    room_code_length: int = Field(default=6, ge=4)
    chat_max_length: int = Field(default=2000, ge=1)

    ice_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    signaling_url: str = Field(default="ws://localhost:3000/ws")

    @field_validator("ice_servers", "cors_allow_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
