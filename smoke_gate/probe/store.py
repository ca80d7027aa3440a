"""Durable store access used by readiness checks."""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path

TRACKER_TABLE = "_prisma_migrations"


class MigrationStore(ABC):
    """Abstract view of the durable store a readiness probe inspects."""

    @abstractmethod
    async def ping(self) -> None:
        """Run a trivial round trip; raise if the store is unreachable."""

    @abstractmethod
    async def applied_migrations(self) -> set[str]:
        """Return identifiers the migration tracker recorded as applied."""

    @abstractmethod
    async def count_rows(self, table: str) -> int:
        """Return the number of rows in a table."""


def sqlite_path_from_url(database_url: str) -> Path:
    """Resolve a ``file:`` database URL (or a bare path) to a filesystem path.

    Examples:
        file:./dev-smoke.db -> dev-smoke.db
        sqlite:///var/app.db -> /var/app.db

    """
    for prefix in ("sqlite:///", "sqlite://", "file:"):
        if database_url.startswith(prefix):
            database_url = database_url.removeprefix(prefix)
            break
    return Path(database_url.split("?", 1)[0])


@dataclass(frozen=True, kw_only=True)
class SQLiteStore(MigrationStore):
    """SQLite-backed store.

    The database is opened read-write without being created, so a missing
    file surfaces as a connectivity failure instead of an empty database.
    """

    path: Path
    timeout: float = 5.0

    @classmethod
    def from_url(cls, database_url: str) -> "SQLiteStore":
        return cls(path=sqlite_path_from_url(database_url))

    def _connect(self) -> sqlite3.Connection:
        uri = f"{self.path.resolve().as_uri()}?mode=rw"
        return sqlite3.connect(uri, uri=True, timeout=self.timeout)

    def _query(self, sql: str) -> list[tuple[object, ...]]:
        with closing(self._connect()) as conn:
            return conn.execute(sql).fetchall()

    async def ping(self) -> None:
        await asyncio.to_thread(self._query, "SELECT 1")

    async def applied_migrations(self) -> set[str]:
        rows = await asyncio.to_thread(
            self._query,
            f"SELECT migration_name FROM {TRACKER_TABLE} "
            "WHERE finished_at IS NOT NULL AND rolled_back_at IS NULL",
        )
        return {str(row[0]) for row in rows}

    async def count_rows(self, table: str) -> int:
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table!r}")
        rows = await asyncio.to_thread(self._query, f'SELECT COUNT(*) FROM "{table}"')
        return int(rows[0][0])  # type: ignore[call-overload]
