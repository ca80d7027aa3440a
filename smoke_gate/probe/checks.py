"""Readiness checks run by the readiness probe.

Every check converts its own faults into a failed result so the probe
endpoint can always answer.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from smoke_gate.models.readiness import CheckResult
from smoke_gate.probe.store import MigrationStore

log = logging.getLogger(__name__)

MIGRATION_ID_PATTERN = re.compile(r"^\d{14}_.+")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def discover_migrations(migrations_dir: Path) -> Sequence[str]:
    """List migration identifiers the running build expects.

    Identifiers are timestamp-prefixed directory names (e.g.
    ``20250101010101_init``), returned in ascending order.

    Raises:
        OSError: If the directory is absent or cannot be read

    """
    return sorted(
        entry.name
        for entry in migrations_dir.iterdir()
        if entry.is_dir() and MIGRATION_ID_PATTERN.match(entry.name)
    )


class ReadinessCheck(ABC):
    """A single independent readiness check."""

    name: str

    @abstractmethod
    async def run(self) -> CheckResult:
        """Run the check; must not raise."""


@dataclass(frozen=True, kw_only=True)
class ConnectivityCheck(ReadinessCheck):
    """Passes when a trivial round trip against the store completes."""

    store: MigrationStore
    name: str = "db"

    async def run(self) -> CheckResult:
        started = time.perf_counter()
        try:
            await self.store.ping()
        except Exception as e:
            log.warning("Connectivity check failed: %s", e)
            return CheckResult(ok=False, detail=str(e))
        return CheckResult(ok=True, ms=_elapsed_ms(started))


@dataclass(frozen=True, kw_only=True)
class MigrationBacklogCheck(ReadinessCheck):
    """Passes when every migration shipped with the build has been applied."""

    store: MigrationStore
    migrations_dir: Path
    name: str = "migrations"

    async def run(self) -> CheckResult:
        started = time.perf_counter()
        try:
            expected = discover_migrations(self.migrations_dir)
        except OSError as e:
            log.warning("Cannot read migrations from %s: %s", self.migrations_dir, e)
            return CheckResult(ok=False, detail=f"cannot read migrations: {e}")

        try:
            applied = await self.store.applied_migrations()
        except Exception as e:
            log.warning("Cannot read applied migrations: %s", e)
            return CheckResult(ok=False, detail=f"cannot read migration tracker: {e}")

        pending = [name for name in expected if name not in applied]
        if pending:
            log.info("%d pending migration(s): %s", len(pending), ", ".join(pending))
        return CheckResult(
            ok=not pending,
            pending=len(pending),
            detail=f"pending: {', '.join(pending)}" if pending else None,
            ms=_elapsed_ms(started),
        )


@dataclass(frozen=True, kw_only=True)
class RequiredSettingsCheck(ReadinessCheck):
    """Passes when every required setting is present.

    Works on an environment snapshot taken at start-up and reports missing
    names only, never values.
    """

    names: Sequence[str]
    environ: Mapping[str, str] = field(repr=False)
    name: str = "env"

    async def run(self) -> CheckResult:
        missing = [key for key in self.names if not self.environ.get(key)]
        if missing:
            return CheckResult(ok=False, detail=f"missing: {', '.join(missing)}")
        return CheckResult(ok=True)


@dataclass(frozen=True, kw_only=True)
class SeedDataCheck(ReadinessCheck):
    """Passes when the seeded table holds at least one row."""

    store: MigrationStore
    table: str
    name: str = "seed"

    async def run(self) -> CheckResult:
        started = time.perf_counter()
        try:
            count = await self.store.count_rows(self.table)
        except Exception as e:
            log.warning("Seed data check failed for %s: %s", self.table, e)
            return CheckResult(ok=False, detail=str(e))
        return CheckResult(
            ok=count > 0,
            detail=None if count else f"table {self.table} is empty",
            ms=_elapsed_ms(started),
        )
