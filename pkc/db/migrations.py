"""
Database migration utilities.
"""
import os
from typing import Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..logging_config import logger
from ..models import EMBEDDING_DIM

SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "scripts")


def list_migration_files(migrations_dir: str) -> List[str]:
    """Sorted .sql file names in a directory (empty if it does not exist)."""
    if not os.path.isdir(migrations_dir):
        return []
    return sorted(f for f in os.listdir(migrations_dir) if f.endswith(".sql"))


def render_migration(sql: str, params: Dict[str, object]) -> str:
    """Fill {NAME} placeholders; unknown names are left untouched."""
    for name, value in params.items():
        sql = sql.replace("{" + name + "}", str(value))
    return sql


def run_sql_migrations(db_engine: Engine, migrations_dir: str = None, params: Dict[str, object] = None) -> int:
    """
    Run all SQL migration files for the engine's dialect.

    Scripts live in scripts/<dialect>/ (e.g. scripts/postgresql/001_initial.sql).
    {EMBEDDING_DIM} in a script is replaced with the vector column size
    unless params says otherwise.

    Migration files should:
    - Be named with a sortable prefix (e.g., 001_initial.sql, 002_add_columns.sql)
    - End with .sql extension
    - Be idempotent (safe to run multiple times)

    Returns:
        Number of files executed

    Raises:
        Exception: If any migration fails
    """
    if migrations_dir is None:
        migrations_dir = os.path.join(SCRIPTS_DIR, db_engine.dialect.name)
    if params is None:
        params = {"EMBEDDING_DIM": EMBEDDING_DIM}

    migration_files = list_migration_files(migrations_dir)
    if not migration_files:
        logger.info("No migration files found", migrations_dir=migrations_dir)
        return 0

    with db_engine.begin() as conn:
        for filename in migration_files:
            filepath = os.path.join(migrations_dir, filename)
            logger.info("Running migration", filename=filename)

            with open(filepath, "r", encoding="utf-8") as f:
                sql = f.read()

            conn.execute(text(render_migration(sql, params)))
            logger.info("Completed migration", filename=filename)

    logger.info("Migrations executed", count=len(migration_files))
    return len(migration_files)
