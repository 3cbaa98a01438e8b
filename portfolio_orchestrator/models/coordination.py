"""
Cross-domain coordination models.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from portfolio_orchestrator.models.deployment import DomainResult, HealthResult
from portfolio_orchestrator.models.domain import DomainDescriptor, utc_now

COORDINATION_PHASES = ["validation", "preparation", "deployment", "verification"]


class CoordinationFailure(BaseModel):
    """A domain that did not make it through a coordination phase."""

    domain: str
    phase: str
    error: str
    error_type: Optional[str] = None


class CoordinationResults(BaseModel):
    """Per-domain results of a coordination run."""

    successful: List[DomainResult] = Field(default_factory=list)
    failed: List[CoordinationFailure] = Field(default_factory=list)
    rolled_back: List[DomainResult] = Field(default_factory=list)

    def failed_domains(self) -> List[str]:
        return [failure.domain for failure in self.failed]

    def successful_domains(self) -> List[str]:
        return [result.domain for result in self.successful]


class CoordinationMetrics(BaseModel):
    """Counters for a coordination run."""

    total_domains: int = 0
    completed: int = 0
    failed: int = 0
    rolled_back: int = 0


class Coordination(BaseModel):
    """A single coordinated multi-domain deployment episode."""

    coordination_id: str
    domains: List[str]
    options: Dict[str, Any] = Field(default_factory=dict)
    phases: List[str] = Field(default_factory=lambda: list(COORDINATION_PHASES))
    current_phase: Optional[str] = None
    completed_phases: List[str] = Field(default_factory=list)
    deployment_order: List[str] = Field(default_factory=list)
    batches: List[List[str]] = Field(default_factory=list)
    results: CoordinationResults = Field(default_factory=CoordinationResults)
    warnings: List[str] = Field(default_factory=list)
    metrics: CoordinationMetrics = Field(default_factory=CoordinationMetrics)
    status: Literal["running", "success", "partial", "failed"] = "running"
    error: Optional[str] = None
    started_at: str = Field(default_factory=utc_now)
    ended_at: Optional[str] = None
    duration: float = 0.0

    def active_domains(self) -> List[str]:
        """In-scope domains that have not failed so far, in input order."""
        failed = set(self.results.failed_domains())
        return [domain for domain in self.domains if domain not in failed]


class SharedResource(BaseModel):
    """A resource referenced by more than one domain, provisioned once."""

    key: str = Field(..., description="kind:name identity")
    name: str
    kind: str
    environment: str
    binding: str = "DB"
    domains: List[str] = Field(default_factory=list, description="Referencing domains")
    resource_id: Optional[str] = Field(None, description="Platform ID once provisioned")
    created: bool = False


class DiscoveryError(BaseModel):
    """A discovery failure confined to one source or one input."""

    source: str
    error: str
    domain: Optional[str] = None


class DiscoveryResult(BaseModel):
    """Outcome of portfolio discovery."""

    session_id: str
    domains: List[DomainDescriptor] = Field(default_factory=list)
    errors: List[DiscoveryError] = Field(default_factory=list)
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)
    duration: float = 0.0

    @property
    def total_domains(self) -> int:
        return len(self.domains)


class PortfolioHealthReport(BaseModel):
    """Result of probing every registered domain."""

    session_id: str
    checks: Dict[str, HealthResult] = Field(default_factory=dict)
    total: int = 0
    healthy: int = 0
    unhealthy: int = 0
    errors: int = 0
