"""
Migration Runner - Applies pending Alembic migrations.

Called from the application lifespan when RUN_MIGRATIONS_ON_STARTUP is set,
and usable as a one-shot command (`vault-access-migrate`).
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from vault_access.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current and head revisions of the schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def _get_sync_database_url() -> str:
    """Alembic's command API uses synchronous connections."""
    return settings.database_url.replace("+asyncpg", "+psycopg2")


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", _get_sync_database_url().replace("%", "%%"))
    return alembic_cfg


def check_migrations_status() -> MigrationStatus:
    """
    Check migration status without applying them.

    Raises:
        FileNotFoundError: alembic.ini is missing
    """
    if not ALEMBIC_INI_PATH.exists():
        raise FileNotFoundError(f"Alembic config not found at {ALEMBIC_INI_PATH}")

    alembic_cfg = _alembic_config()
    engine = create_engine(_get_sync_database_url())
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Only upgrades when the database is behind head.

    Raises:
        RuntimeError: The upgrade failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        alembic_cfg = _alembic_config()
        engine = create_engine(_get_sync_database_url())

        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info("database_schema_up_to_date", revision=current)
                return

            logger.info("database_migrations_starting", current=current, head=head)
            command.upgrade(alembic_cfg, "head")
            logger.info("database_migrations_complete", revision=_get_current_revision(engine))

        finally:
            engine.dispose()

    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e


def main(argv: list[str] | None = None) -> None:
    """Console entry point."""
    from vault_access.observability.logging import setup_logging

    parser = argparse.ArgumentParser(description="Apply vault access schema migrations")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Report current and head revisions without upgrading; exit 1 if behind",
    )
    args = parser.parse_args(argv)

    setup_logging()

    if args.check:
        status = check_migrations_status()
        logger.info(
            "database_migration_status",
            current=status.current_revision,
            head=status.head_revision,
            pending=status.pending,
        )
        sys.exit(1 if status.pending else 0)

    run_migrations()
