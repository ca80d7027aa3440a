"""Readiness probe aggregating independent checks."""

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from smoke_gate.config import ProbeConfig
from smoke_gate.models.readiness import CheckResult, ReadinessReport
from smoke_gate.probe.checks import (
    ConnectivityCheck,
    MigrationBacklogCheck,
    ReadinessCheck,
    RequiredSettingsCheck,
    SeedDataCheck,
)
from smoke_gate.probe.store import MigrationStore, SQLiteStore

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class ReadinessProbe:
    """Answers whether the service can serve traffic now."""

    checks: Sequence[ReadinessCheck]

    @classmethod
    def from_config(
        cls,
        config: ProbeConfig,
        store: MigrationStore | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "ReadinessProbe":
        """Assemble the standard checks for a configured store."""
        store = store or SQLiteStore.from_url(config.database_url)
        checks: list[ReadinessCheck] = [
            ConnectivityCheck(store=store),
            RequiredSettingsCheck(
                names=config.required_settings,
                environ=dict(os.environ if environ is None else environ),
            ),
            MigrationBacklogCheck(store=store, migrations_dir=config.migrations_dir),
        ]
        if config.seed_table:
            checks.append(SeedDataCheck(store=store, table=config.seed_table))
        return cls(checks=checks)

    async def evaluate(self) -> ReadinessReport:
        """Run every check, in order and without short-circuiting.

        Returns:
            A fresh report; its ``ok`` flag is the conjunction of all checks

        """
        results: dict[str, CheckResult] = {}
        for check in self.checks:
            try:
                results[check.name] = await check.run()
            except Exception as e:
                log.error("Readiness check %s raised: %s", check.name, e, exc_info=e)
                results[check.name] = CheckResult(ok=False, detail=str(e))

        report = ReadinessReport(checks=results)
        if not report.ok:
            failed = [name for name, result in results.items() if not result.ok]
            log.info("Not ready, failing checks: %s", ", ".join(failed))
        return report
