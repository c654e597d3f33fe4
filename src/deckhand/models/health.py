"""Health gate result models. These are ephemeral and never persisted."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class HealthOutcome(str, Enum):
    """Outcome of a single health probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNREACHABLE = "unreachable"


class HealthCheckResult(BaseModel):
    """Result of one probe against a service."""

    model_config = ConfigDict(extra="forbid")

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: HealthOutcome
    latency_ms: float = Field(..., ge=0)
    status_code: int | None = None
    detail: str | None = None


class HealthReport(BaseModel):
    """Probe history of a gate run that ended healthy."""

    model_config = ConfigDict(extra="forbid")

    target: str
    results: list[HealthCheckResult] = Field(default_factory=list)
    elapsed: float = Field(..., ge=0, description="Seconds spent in the gate")

    @property
    def attempts(self) -> int:
        """Number of probes made."""
        return len(self.results)

    def count(self, outcome: HealthOutcome) -> int:
        """Number of probes with the given outcome."""
        return sum(1 for r in self.results if r.outcome == outcome)
