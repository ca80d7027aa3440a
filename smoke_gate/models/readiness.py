"""Models for readiness reports produced by the readiness probe."""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import Field, computed_field

from smoke_gate.models.base import Model


class CheckResult(Model):
    """Outcome of a single readiness check."""

    ok: bool = Field(..., description="Whether the check passed")
    pending: int | None = Field(
        default=None, ge=0, description="Outstanding items (migration backlog)"
    )
    detail: str | None = Field(default=None, description="Failure or context detail")
    ms: float | None = Field(default=None, ge=0, description="Check latency")


class ReadinessReport(Model):
    """Aggregated result of every readiness check for one probe invocation.

    The overall flag is derived from the checks, so a report can never claim
    readiness while one of its checks failed.
    """

    checks: Mapping[str, CheckResult] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ok(self) -> bool:
        """True when every check passed."""
        return all(check.ok for check in self.checks.values())

    @property
    def status_code(self) -> int:
        """HTTP status mirroring the overall flag."""
        return 200 if self.ok else 503

    def checks_payload(self) -> dict[str, Any]:
        """Serialise checks without unset optional fields."""
        return {
            name: check.model_dump(exclude_none=True)
            for name, check in self.checks.items()
        }
