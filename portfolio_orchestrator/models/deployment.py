"""
Deployment result models.

Every per-domain outcome is reported as a structured record rather than an
exception, so batch callers can continue with sibling domains.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from portfolio_orchestrator.models.domain import utc_now


class DomainResult(BaseModel):
    """Outcome of running the phase pipeline for one domain."""

    domain: str
    success: bool
    deployment_id: Optional[str] = None
    status: str = Field(..., description="Final domain status")
    phase: Optional[str] = Field(None, description="Failing phase, if any")
    error: Optional[str] = None
    error_type: Optional[str] = Field(None, description="Exception class name of the failure")
    url: Optional[str] = Field(None, description="Public URL of the deployment")
    worker_url: Optional[str] = None
    duration: float = Field(default=0.0, description="Seconds spent in the pipeline")
    phases_completed: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    skipped: bool = Field(default=False, description="Not attempted (dependency failed)")


class BatchResult(BaseModel):
    """Outcome of one concurrently deployed batch."""

    index: int
    domains: List[str]
    successful: List[DomainResult] = Field(default_factory=list)
    failed: List[DomainResult] = Field(default_factory=list)


class DeploymentSummary(BaseModel):
    """Aggregate statistics for a portfolio deployment."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = Field(default=0.0, description="Percentage of successful domains")
    average_duration: float = Field(default=0.0, description="Seconds per successful domain")
    total_batches: int = 0


class PortfolioResult(BaseModel):
    """Outcome of a batched portfolio deployment."""

    successful: List[DomainResult] = Field(default_factory=list)
    failed: List[DomainResult] = Field(default_factory=list)
    batches: List[BatchResult] = Field(default_factory=list)
    summary: DeploymentSummary = Field(default_factory=DeploymentSummary)
    total_duration: float = 0.0


class HealthResult(BaseModel):
    """A single health probe result."""

    url: str
    status: Literal["healthy", "unhealthy", "error"]
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None
    checked_at: str = Field(default_factory=utc_now)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


class VerificationResult(BaseModel):
    """Outcome of health verification with retries."""

    domain: str
    url: Optional[str] = None
    passed: bool
    attempts: int = 0
    warning: Optional[str] = None
    last_result: Optional[HealthResult] = None


class RollbackFailure(BaseModel):
    """A rollback action that could not be reversed."""

    action_id: str
    domain: str
    type: str
    error: str


class RollbackResult(BaseModel):
    """Outcome of executing (part of) the rollback plan."""

    executed: List[str] = Field(default_factory=list, description="Action IDs in execution order")
    failed: List[RollbackFailure] = Field(default_factory=list)
    domains_rolled_back: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed
