"""Convergence verification schemas."""

from enum import Enum

from pydantic import BaseModel, Field


class CheckName(str, Enum):
    DNS = "dns"
    HTTP = "http"
    TLS = "tls"


class CheckStatus(str, Enum):
    """Terminal state of a convergence check. There is no hard failure."""

    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class VerificationResult(BaseModel):
    check: CheckName
    status: CheckStatus
    target: str
    observed: str | None = None
    attempts: int = 0
    elapsed_seconds: float = 0.0
    hint: str | None = None


class VerificationReport(BaseModel):
    endpoint: str | None
    results: list[VerificationResult] = Field(default_factory=list)

    @property
    def converged(self) -> bool:
        return all(r.status == CheckStatus.SATISFIED for r in self.results)

    @property
    def pending(self) -> list[VerificationResult]:
        return [r for r in self.results if r.status != CheckStatus.SATISFIED]
