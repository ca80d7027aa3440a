"""Fixtures for integration tests."""

import sqlite3
import uuid
from contextlib import closing
from pathlib import Path
from typing import Protocol

import pytest

MIGRATIONS = ("20250101010101_init", "20250202020202_add_brands")


class ApplyMigrationFn(Protocol):
    """Protocol for recording a migration in the tracker table."""

    def __call__(
        self, name: str, *, finished: bool = True, rolled_back: bool = False
    ) -> None:
        """Insert a tracker row for the migration."""


class SeedFn(Protocol):
    """Protocol for inserting seed rows."""

    def __call__(self, *names: str) -> None:
        """Insert one brand row per name."""


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    """Create a migrations directory laid out like the external migration tool's."""
    directory = tmp_path / "prisma" / "migrations"
    for name in MIGRATIONS:
        (directory / name).mkdir(parents=True)
        (directory / name / "migration.sql").write_text("SELECT 1;\n")
    (directory / "migration_lock.toml").write_text('provider = "sqlite"\n')
    return directory


@pytest.fixture
def database(tmp_path: Path) -> Path:
    """Create a SQLite database with an empty migration tracker."""
    path = tmp_path / "app.db"
    with closing(sqlite3.connect(path)) as conn:
        conn.execute(
            """
            CREATE TABLE _prisma_migrations (
                id TEXT PRIMARY KEY,
                migration_name TEXT NOT NULL,
                finished_at DATETIME,
                rolled_back_at DATETIME
            )
            """
        )
        conn.execute("CREATE TABLE Brand (id INTEGER PRIMARY KEY, name TEXT)")
        conn.commit()
    return path


@pytest.fixture
def apply_migration(database: Path) -> ApplyMigrationFn:
    """Return a function recording migrations as the migration tool would."""

    def _apply(name: str, *, finished: bool = True, rolled_back: bool = False) -> None:
        with closing(sqlite3.connect(database)) as conn:
            conn.execute(
                "INSERT INTO _prisma_migrations "
                "(id, migration_name, finished_at, rolled_back_at) VALUES (?, ?, ?, ?)",
                (
                    str(uuid.uuid4()),
                    name,
                    "2099-01-01T12:00:00Z" if finished else None,
                    "2099-01-01T12:01:00Z" if rolled_back else None,
                ),
            )
            conn.commit()

    return _apply


@pytest.fixture
def seed(database: Path) -> SeedFn:
    """Return a function inserting brand rows."""

    def _seed(*names: str) -> None:
        with closing(sqlite3.connect(database)) as conn:
            conn.executemany(
                "INSERT INTO Brand (name) VALUES (?)", [(name,) for name in names]
            )
            conn.commit()

    return _seed
