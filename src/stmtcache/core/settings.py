from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from enum import Enum

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

class JournalMode(str, Enum):
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    PERSIST = "PERSIST"
    MEMORY = "MEMORY"
    WAL = "WAL"
    OFF = "OFF"

class TransactionMode(str, Enum):
    DEFERRED = "DEFERRED"
    IMMEDIATE = "IMMEDIATE"
    EXCLUSIVE = "EXCLUSIVE"

class StatementCacheSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STMT_CACHE_", extra="ignore")

    enabled: bool = Field(default=True, description="Cache prepared statements by SQL text")
    max_size: int = Field(default=1000, ge=1, description="Max cached statements before the oldest generation is dropped")
    max_age_seconds: Optional[float] = Field(default=None, description="Statement TTL in seconds, unset for no expiry")

    @field_validator("max_age_seconds")
    @classmethod
    def check_max_age(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not v > 0:
            raise ValueError("max_age_seconds must be greater than 0")
        return v

    def as_options(self) -> dict:
        return {"max_size": self.max_size, "max_age": self.max_age_seconds}

class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DB_", extra="ignore")

    path: str = Field(default=":memory:", description="SQLite database file for the driver")
    url: str = Field(default="sqlite+aiosqlite:///:memory:", description="SQLAlchemy connection URL")
    journal_mode: JournalMode = Field(default=JournalMode.WAL, description="PRAGMA journal_mode applied on connect")
    synchronous: str = Field(default="NORMAL", description="PRAGMA synchronous applied on connect")
    timeout_seconds: float = Field(default=30.0, ge=0, description="How long a connection waits on a locked database")
    transaction_mode: TransactionMode = Field(default=TransactionMode.DEFERRED, description="Lock mode used by BEGIN in driver transactions")

    @field_validator("synchronous")
    @classmethod
    def check_synchronous(cls, v: str) -> str:
        value = v.strip().upper()
        if value not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raise ValueError(f"Unsupported synchronous mode: {v}")
        return value

class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    file: Optional[Path] = Field(default=None, description="Optional log file, rotated at 10 MB")

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: LogLevel = Field(default=LogLevel.INFO)

    cache: StatementCacheSettings = Field(default_factory=StatementCacheSettings)
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


settings = Settings()
