"""
client/config.py -- Admin client settings via pydantic-settings.

LINKSHELF_URL    base URL of the linkshelf server (default http://localhost:8000)
LINKSHELF_STATE  path of the client state database (default ~/.linkshelf/state.db)
LINKSHELF_TIMEOUT  request timeout in seconds for catalog calls (default 10)
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from client.storage import DEFAULT_STATE_PATH


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LINKSHELF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str = "http://localhost:8000"
    state: str = str(DEFAULT_STATE_PATH)
    timeout: float = 10.0

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("LINKSHELF_URL must start with http:// or https://")
        return value.rstrip("/")


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
