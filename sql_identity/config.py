"""Application configuration."""
from functools import lru_cache
import re

from pydantic import field_validator
from pydantic_settings import BaseSettings

# RFC 7230 "token" characters, the only ones allowed in a header field name.
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

DEFAULT_HEADER_NAME = "X-Actix-Auth"
DEFAULT_POOL_SIZE = 3


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "SQL Identity"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./identities.db"
    pool_size: int = DEFAULT_POOL_SIZE

    # Identity
    auth_header_name: str = DEFAULT_HEADER_NAME
    track_client_changes: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        if not value:
            raise ValueError("DATABASE_URL must be set.")
        return value

    @field_validator("pool_size")
    @classmethod
    def validate_pool_size(cls, value: int) -> int:
        """Fail closed on a pool that could never serve a request."""
        if value < 1:
            raise ValueError("POOL_SIZE must be at least 1.")
        return value

    @field_validator("auth_header_name")
    @classmethod
    def validate_auth_header_name(cls, value: str) -> str:
        if not _HEADER_NAME_RE.match(value):
            raise ValueError("AUTH_HEADER_NAME must be a valid HTTP header name.")
        if value.lower() == "authorization":
            raise ValueError("AUTH_HEADER_NAME must not reuse the Authorization header.")
        return value


def is_valid_header_name(name: str) -> bool:
    """Check a response header name against the HTTP token grammar."""
    return bool(_HEADER_NAME_RE.match(name))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
