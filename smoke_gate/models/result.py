"""Models for polling and orchestration results."""

from dataclasses import dataclass
from typing import Literal

from smoke_gate.models.summary import SmokeSummary


@dataclass(frozen=True, kw_only=True)
class PollResult[T]:
    """Result of a bounded polling loop.

    Contains the value of the first successful attempt, or the last error
    observed before the deadline elapsed.
    """

    ok: bool
    attempts: int
    elapsed: float
    value: T | None = None
    error: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunOutcome:
    """Terminal signal of one orchestrated smoke run."""

    status: Literal["passed", "failed"]
    exit_code: int
    stage: str | None = None
    message: str | None = None
    summary: SmokeSummary | None = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"
