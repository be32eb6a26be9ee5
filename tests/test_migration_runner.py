"""
Tests for the migration runner.

Alembic and the engine are patched; no database is touched.
"""

from unittest.mock import MagicMock, patch

import pytest

from vault_access.db import migration_runner
from vault_access.db.migration_runner import MigrationStatus


class TestSyncUrl:
    def test_asyncpg_replaced(self):
        with patch.object(migration_runner, "settings") as mock_settings:
            mock_settings.database_url = "postgresql+asyncpg://u:p@db:5432/vault"
            assert migration_runner._get_sync_database_url() == "postgresql+psycopg2://u:p@db:5432/vault"


class TestRunMigrations:
    """Tests for run_migrations."""

    def test_up_to_date_skips_upgrade(self):
        with (
            patch.object(migration_runner, "create_engine", return_value=MagicMock()),
            patch.object(migration_runner, "_get_current_revision", return_value="2026_10_19_0000"),
            patch.object(migration_runner, "_get_head_revision", return_value="2026_10_19_0000"),
            patch.object(migration_runner, "command") as mock_command,
        ):
            migration_runner.run_migrations()

        mock_command.upgrade.assert_not_called()

    def test_pending_runs_upgrade(self):
        engine = MagicMock()
        with (
            patch.object(migration_runner, "create_engine", return_value=engine),
            patch.object(migration_runner, "_get_current_revision", return_value=None),
            patch.object(migration_runner, "_get_head_revision", return_value="2026_10_19_0000"),
            patch.object(migration_runner, "command") as mock_command,
        ):
            migration_runner.run_migrations()

        mock_command.upgrade.assert_called_once()
        assert mock_command.upgrade.call_args.args[1] == "head"
        engine.dispose.assert_called_once()

    def test_failure_wrapped(self):
        with (
            patch.object(migration_runner, "create_engine", return_value=MagicMock()),
            patch.object(migration_runner, "_get_current_revision", side_effect=Exception("refused")),
        ):
            with pytest.raises(RuntimeError, match="refused"):
                migration_runner.run_migrations()

    def test_status_pending(self):
        assert MigrationStatus(current_revision=None, head_revision="a").pending is True
        assert MigrationStatus(current_revision="a", head_revision="a").pending is False


class TestMain:
    """Tests for the console entry point."""

    def test_check_exits_nonzero_when_behind(self):
        status = MigrationStatus(current_revision=None, head_revision="2026_10_19_0000")
        with (
            patch.object(migration_runner, "check_migrations_status", return_value=status),
            patch.object(migration_runner, "run_migrations") as mock_run,
            patch("vault_access.observability.logging.setup_logging"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                migration_runner.main(["--check"])

        assert exc_info.value.code == 1
        mock_run.assert_not_called()

    def test_check_exits_zero_when_current(self):
        status = MigrationStatus(current_revision="a", head_revision="a")
        with (
            patch.object(migration_runner, "check_migrations_status", return_value=status),
            patch("vault_access.observability.logging.setup_logging"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                migration_runner.main(["--check"])

        assert exc_info.value.code == 0

    def test_default_runs_upgrade(self):
        with (
            patch.object(migration_runner, "run_migrations") as mock_run,
            patch("vault_access.observability.logging.setup_logging"),
        ):
            migration_runner.main([])

        mock_run.assert_called_once()

    def test_check_status_requires_ini(self, tmp_path):
        with patch.object(migration_runner, "ALEMBIC_INI_PATH", tmp_path / "missing.ini"):
            with pytest.raises(FileNotFoundError):
                migration_runner.check_migrations_status()
