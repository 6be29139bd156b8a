"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Dict, Iterable, Set

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


# Columns introduced after the first release of each table.
LATE_COLUMNS: Dict[str, Dict[str, str]] = {
    "folders": {
        "parent_id": "VARCHAR(36) REFERENCES folders(id)",
        "character_id": "VARCHAR(36) REFERENCES characters(id)",
    },
    "images": {
        "file_migrated": "BOOLEAN NOT NULL DEFAULT 0",
        "loras": "JSON",
    },
}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    The function is intentionally light-weight so it can run on every
    application start. Missing tables are created, and databases created
    before folders could be nested or scoped to a character gain the
    ``parent_id`` and ``character_id`` columns. Images gain ``file_migrated``,
    which tracks whether the file already sits in its folder directory.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import Character, Folder, Image

        required_tables = {
            "characters": Character.__table__,
            "folders": Folder.__table__,
            "images": Image.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)

        for table_name, columns in LATE_COLUMNS.items():
            if table_name not in table_names:
                continue
            existing = _get_column_names(table_name)
            for column_name, definition in columns.items():
                if column_name in existing:
                    continue
                with db.engine.begin() as connection:
                    connection.execute(
                        text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {definition}")
                    )
    except SQLAlchemyError:
        # If we fail to introspect or modify the schema we re-raise the error so
        # that the application does not continue in a partially configured state.
        raise


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver hook
    module = type(dbapi_connection).__module__
    if not module.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
