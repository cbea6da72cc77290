"""Configuration management using Pydantic Settings."""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import ValidationError

if TYPE_CHECKING:
    from .clients import StorageClient

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

# Page budget of the managed store the guide targets.
DEFAULT_PAGE_BYTES = 1024 * 1024


def check_name(kind: str, value: str) -> str:
    if not isinstance(value, str) or not NAME_PATTERN.match(value):
        raise ValidationError(f"Invalid {kind} {value!r}: use letters, digits, '_', '.' or '-'")
    return value


class Settings(BaseSettings):
    """Application settings loaded from NOTES_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Physical table names are "{namespace}-{environment}-{table}"
    namespace: str = "notes-site"
    environment: Literal["testing", "staging", "production"] = "staging"

    # Storage
    storage_backend: Literal["memory", "sqlite", "dynamodb"] = "memory"
    sqlite_path: str = "notes.db"
    dynamodb_region: str = "us-east-1"
    dynamodb_endpoint: Optional[str] = None  # For DynamoDB Local or localstack
    dynamodb_max_attempts: int = Field(default=3, ge=1)
    page_bytes: int = Field(default=DEFAULT_PAGE_BYTES, gt=0)

    # Where the session guard sends anonymous visitors
    home_path: str = "/"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @field_validator("namespace")
    @classmethod
    def _valid_namespace(cls, value: str) -> str:
        if not NAME_PATTERN.match(value):
            raise ValueError("namespace may only contain letters, digits, '_', '.' or '-'")
        return value


@dataclass(frozen=True)
class StoreConfig:
    """Everything a ResourceStore needs, passed in explicitly."""

    namespace: str
    environment: str
    client: "StorageClient"
    page_bytes: int = DEFAULT_PAGE_BYTES

    def __post_init__(self):
        check_name("namespace", self.namespace)
        check_name("environment", self.environment)
        if self.page_bytes <= 0:
            raise ValidationError("page_bytes must be positive")

    def physical_name(self, name: str) -> str:
        check_name("table name", name)
        return f"{self.namespace}-{self.environment}-{name}"


def build_client(settings: Settings) -> "StorageClient":
    """Construct the storage client selected by ``storage_backend``."""
    from .clients import MemoryClient, SqliteClient

    if settings.storage_backend == "sqlite":
        return SqliteClient(settings.sqlite_path)
    if settings.storage_backend == "dynamodb":
        from .dynamo import DynamoClient

        return DynamoClient(
            region=settings.dynamodb_region,
            endpoint_url=settings.dynamodb_endpoint,
            max_attempts=settings.dynamodb_max_attempts,
        )
    return MemoryClient()


def store_config(settings: Settings, client: "StorageClient") -> StoreConfig:
    return StoreConfig(
        namespace=settings.namespace,
        environment=settings.environment,
        client=client,
        page_bytes=settings.page_bytes,
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
