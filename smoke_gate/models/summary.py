"""Models for smoke verification summaries."""

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Literal

from pydantic import Field, computed_field

from smoke_gate.models.base import CamelModel


class SmokeSummary(CamelModel):
    """Outcome of one smoke verification run against a base address."""

    base: str = Field(..., description="Base address of the verified instance")
    timeout_ms: int = Field(..., gt=0, description="Per-poll deadline")
    interval_ms: int = Field(..., gt=0, description="Delay between poll attempts")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    failures: Sequence[str] = Field(
        default_factory=tuple, description="Failed checks in execution order"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> Literal["passed", "failed"]:
        """Failed exactly when at least one failure was recorded."""
        return "failed" if self.failures else "passed"

    @property
    def passed(self) -> bool:
        return not self.failures
