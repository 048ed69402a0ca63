"""Unit tests for CLI commands."""

from unittest.mock import AsyncMock, patch

import pytest
import typer
from typer.testing import CliRunner

from socialdb.cli import app
from socialdb.errors import MigrationError

runner = CliRunner()

SHIPPED_COUNT = 7


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "social.db"


def invoke(*args):
    result = runner.invoke(app, [str(arg) for arg in args])
    if result.exit_code != 0:
        print(f"stdout: {result.stdout}")
        if result.exception:
            print(f"exception: {result.exception}")
    return result


class TestCLICommands:
    """Tests for CLI commands."""

    def test_cli_app_exists(self):
        """Test CLI app is defined."""
        assert isinstance(app, typer.Typer)

    def test_migrate_command(self, db_path):
        """Test migrate applies every shipped migration."""
        result = invoke("migrate", "--database", db_path)

        assert result.exit_code == 0
        assert f"Applied {SHIPPED_COUNT} migration(s)" in result.stdout
        assert "001_initial_schema" in result.stdout
        assert db_path.exists()

    def test_migrate_twice(self, db_path):
        """Test a second migrate reports an up-to-date schema."""
        invoke("migrate", "--database", db_path)

        result = invoke("migrate", "-d", db_path)

        assert result.exit_code == 0
        assert "Schema is up to date" in result.stdout

    def test_status_command(self, db_path):
        invoke("migrate", "--database", db_path)

        result = invoke("status", "--database", db_path)

        assert result.exit_code == 0
        assert f"Total: {SHIPPED_COUNT}" in result.stdout
        assert "Pending: 0" in result.stdout

    def test_status_fresh_database(self, db_path):
        result = invoke("status", "--database", db_path)

        assert result.exit_code == 0
        assert "Applied: 0" in result.stdout
        assert f"Pending: {SHIPPED_COUNT}" in result.stdout

    def test_rollback_command(self, db_path):
        invoke("migrate", "--database", db_path)

        result = invoke("rollback", "--database", db_path, "--verbose")
        status = invoke("status", "--database", db_path)

        assert result.exit_code == 0
        assert "Rolled back 007_add_cascade_to_user_references" in result.stdout
        assert "Pending: 1" in status.stdout

    def test_rollback_nothing_applied(self, db_path):
        result = invoke("rollback", "--database", db_path)

        assert result.exit_code == 0
        assert "No migrations to roll back" in result.stdout

    def test_stats_command(self, db_path):
        invoke("migrate", "--database", db_path)

        result = invoke("stats", "--database", db_path)

        assert result.exit_code == 0
        assert "users" in result.stdout
        assert "messages" in result.stdout

    def test_stats_before_migrate(self, db_path):
        result = invoke("stats", "--database", db_path)

        assert result.exit_code == 0
        assert "No tables found" in result.stdout


class TestCLIFailures:
    """Tests for failing commands."""

    def test_unreachable_database(self, tmp_path):
        """Test a database in a missing directory exits with code 1."""
        result = invoke("migrate", "--database", tmp_path / "missing" / "social.db")

        assert result.exit_code == 1
        assert "Migration failed" in result.stdout

    def test_migration_error(self, db_path):
        with patch(
            "socialdb.cli.MigrationRunner.migrate",
            new=AsyncMock(side_effect=MigrationError("boom", migration="002_x")),
        ):
            result = invoke("migrate", "--database", db_path)

        assert result.exit_code == 1
        assert "boom" in result.stdout

    def test_rollback_error(self, db_path):
        with patch(
            "socialdb.cli.MigrationRunner.rollback",
            new=AsyncMock(side_effect=MigrationError("cannot revert")),
        ):
            result = invoke("rollback", "--database", db_path)

        assert result.exit_code == 1
        assert "Rollback failed" in result.stdout
