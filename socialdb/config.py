"""Configuration management for SocialDB.

Settings come from environment variables (case-insensitive) and an optional
``.env`` file, validated by Pydantic Settings. The ``ENVIRONMENT`` variable
selects a profile that adjusts logging and, for tests, the database:

======================  ==========  =========  ==========================
Profile                 Log level   JSON logs  Database
======================  ==========  =========  ==========================
development             DEBUG       no         ``data_dir/social_media.db``
staging                 INFO        yes        ``data_dir/social_media.db``
production              >= INFO     yes        ``data_dir/social_media.db``
testing                 ERROR       no         ``:memory:``, no log file
======================  ==========  =========  ==========================

Example:
    >>> from socialdb.config import settings
    >>> settings.database_url
    'sqlite+aiosqlite:////srv/socialdb/data/social_media.db'
    >>> settings.feed_limit
    50
"""

from enum import StrEnum
from pathlib import Path
from typing import NamedTuple, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

MEMORY_DATABASE = Path(":memory:")

DATABASE_FILENAME = "social_media.db"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Environment(StrEnum):
    """Deployment profile selected by ``ENVIRONMENT``."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Profile(NamedTuple):
    """Overrides applied on top of the loaded values.

    ``log_level`` replaces the configured level; ``min_log_level`` only
    raises it. None leaves the loaded value alone.
    """

    log_json: bool
    log_level: Optional[str] = None
    min_log_level: Optional[str] = None
    log_to_file: Optional[bool] = None
    in_memory: bool = False


PROFILES: dict[Environment, Profile] = {
    Environment.DEVELOPMENT: Profile(log_json=False, log_level="DEBUG"),
    Environment.STAGING: Profile(log_json=True, log_level="INFO"),
    Environment.PRODUCTION: Profile(log_json=True, min_log_level="INFO"),
    Environment.TESTING: Profile(
        log_json=False, log_level="ERROR", log_to_file=False, in_memory=True
    ),
}


class Settings(BaseSettings):
    """SocialDB settings.

    Every component reads its defaults from the module-level ``settings``
    instance and also accepts explicit overrides.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Environment.DEVELOPMENT

    # Storage
    data_dir: Path = Field(Path("./data"), description="Database file and log directory")
    database_path: Optional[Path] = Field(
        None, description=f"SQLite file (defaults to data_dir/{DATABASE_FILENAME})"
    )
    migrations_dir: Path = Field(
        PACKAGE_MIGRATIONS_DIR, description="Directory of NNN_name.py migration units"
    )

    # Query limits
    feed_limit: int = Field(50, ge=1, le=500)
    explore_limit: int = Field(50, ge=1, le=500)
    search_limit: int = Field(20, ge=1, le=100)
    message_page_size: int = Field(50, ge=1, le=500)
    direct_conversation_retries: int = Field(
        3, ge=1, le=10, description="Get-or-create attempts when a concurrent writer wins"
    )

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = True
    log_json: bool = False

    @field_validator("data_dir", mode="before")
    @classmethod
    def _resolve_data_dir(cls, value: str | Path) -> Path:
        path = Path(value).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _apply_profile(self) -> "Settings":
        profile = PROFILES[self.environment]

        self.log_json = profile.log_json
        if profile.log_level is not None:
            self.log_level = profile.log_level
        elif profile.min_log_level is not None:
            if LOG_LEVELS.index(self.log_level) < LOG_LEVELS.index(profile.min_log_level):
                self.log_level = profile.min_log_level
        if profile.log_to_file is not None:
            self.log_to_file = profile.log_to_file

        if profile.in_memory:
            self.database_path = MEMORY_DATABASE
        elif self.database_path is None:
            self.database_path = self.data_dir / DATABASE_FILENAME
        if self.database_path != MEMORY_DATABASE:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def database_url(self) -> str:
        return database_url_for(self.database_path or MEMORY_DATABASE)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        return self.environment == Environment.STAGING


def database_url_for(path: Path | str) -> str:
    """Build the aiosqlite URL for a database file (or ``:memory:``)."""
    if str(path) == ":memory:":
        return "sqlite+aiosqlite:///:memory:"
    return f"sqlite+aiosqlite:///{path}"


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()


settings = get_settings()
