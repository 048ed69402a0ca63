"""Unit tests for configuration management."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from socialdb.config import (
    MEMORY_DATABASE,
    PACKAGE_MIGRATIONS_DIR,
    Environment,
    Settings,
    database_url_for,
    get_settings,
)


class TestEnvironment:
    """Tests for the Environment enum."""

    def test_environment_values(self):
        assert Environment.DEVELOPMENT == "development"
        assert Environment.PRODUCTION == "production"
        assert Environment.TESTING == "testing"
        assert Environment.STAGING == "staging"


class TestSettings:
    """Tests for Settings class."""

    def test_settings_defaults(self, tmp_path):
        """Test default limits and paths."""
        settings = Settings(environment=Environment.DEVELOPMENT, data_dir=tmp_path)

        assert settings.feed_limit == 50
        assert settings.explore_limit == 50
        assert settings.search_limit == 20
        assert settings.message_page_size == 50
        assert settings.direct_conversation_retries == 3
        assert settings.migrations_dir == PACKAGE_MIGRATIONS_DIR

    def test_settings_database_path_defaults_to_data_dir(self, tmp_path):
        """Test database path is placed under the data directory."""
        settings = Settings(environment=Environment.DEVELOPMENT, data_dir=tmp_path)
        assert settings.database_path == tmp_path.resolve() / "social_media.db"

    def test_settings_explicit_database_path(self, tmp_path):
        """Test an explicit database path is kept."""
        db_path = tmp_path / "nested" / "custom.db"
        settings = Settings(
            environment=Environment.DEVELOPMENT, data_dir=tmp_path, database_path=db_path
        )
        assert settings.database_path == db_path
        assert db_path.parent.exists()

    def test_settings_database_url(self, tmp_path):
        """Test async SQLite URL generation."""
        settings = Settings(environment=Environment.DEVELOPMENT, data_dir=tmp_path)
        assert settings.database_url.startswith("sqlite+aiosqlite:///")
        assert settings.database_url.endswith("social_media.db")

    def test_settings_data_dir_created(self, tmp_path):
        """Test the data directory is created on load."""
        data_dir = tmp_path / "fresh"
        Settings(environment=Environment.DEVELOPMENT, data_dir=data_dir)
        assert data_dir.is_dir()

    def test_settings_limit_bounds(self, tmp_path):
        """Test query limits are validated."""
        with pytest.raises(ValidationError):
            Settings(data_dir=tmp_path, feed_limit=0)
        with pytest.raises(ValidationError):
            Settings(data_dir=tmp_path, search_limit=1000)

    def test_settings_log_level_normalized(self, tmp_path):
        """Test log level is upper-cased."""
        settings = Settings(
            environment=Environment.STAGING, data_dir=tmp_path, log_level="warning"
        )
        assert settings.log_level == "INFO"  # staging profile wins
        settings = Settings(
            environment=Environment.PRODUCTION, data_dir=tmp_path, log_level="warning"
        )
        assert settings.log_level == "WARNING"

    def test_settings_invalid_log_level(self, tmp_path):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            Settings(data_dir=tmp_path, log_level="LOUD")

    def test_settings_from_env(self, tmp_path, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("FEED_LIMIT", "25")

        settings = Settings()

        assert settings.environment == Environment.DEVELOPMENT
        assert settings.feed_limit == 25

    def test_get_settings(self):
        """Test get_settings returns a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestEnvironmentProfiles:
    """Tests for per-environment profiles."""

    def test_testing_profile(self, tmp_path):
        settings = Settings(environment=Environment.TESTING, data_dir=tmp_path)

        assert settings.is_testing
        assert settings.database_path == MEMORY_DATABASE
        assert settings.database_url == "sqlite+aiosqlite:///:memory:"
        assert settings.log_level == "ERROR"
        assert settings.log_to_file is False

    def test_production_profile(self, tmp_path):
        settings = Settings(
            environment=Environment.PRODUCTION, data_dir=tmp_path, log_level="DEBUG"
        )

        assert settings.is_production
        assert settings.log_json is True
        assert settings.log_level == "INFO"

    def test_development_profile(self, tmp_path):
        settings = Settings(environment=Environment.DEVELOPMENT, data_dir=tmp_path)

        assert settings.is_development
        assert settings.log_level == "DEBUG"
        assert settings.log_json is False

    def test_staging_profile(self, tmp_path):
        settings = Settings(environment=Environment.STAGING, data_dir=tmp_path)

        assert settings.is_staging
        assert settings.log_json is True


class TestDatabaseUrl:
    """Tests for database_url_for."""

    def test_memory(self):
        assert database_url_for(":memory:") == "sqlite+aiosqlite:///:memory:"
        assert database_url_for(MEMORY_DATABASE) == "sqlite+aiosqlite:///:memory:"

    def test_file(self):
        assert database_url_for(Path("/tmp/x.db")) == "sqlite+aiosqlite:////tmp/x.db"
