"""Readiness probe module."""

from smoke_gate.probe.app import create_app
from smoke_gate.probe.checks import (
    ConnectivityCheck,
    MigrationBacklogCheck,
    ReadinessCheck,
    RequiredSettingsCheck,
    SeedDataCheck,
)
from smoke_gate.probe.probe import ReadinessProbe
from smoke_gate.probe.store import MigrationStore, SQLiteStore

__all__ = [
    "ConnectivityCheck",
    "MigrationBacklogCheck",
    "MigrationStore",
    "ReadinessCheck",
    "ReadinessProbe",
    "RequiredSettingsCheck",
    "SQLiteStore",
    "SeedDataCheck",
    "create_app",
]
