"""
Run-state models: per-domain deployment state, audit entries, rollback
actions and the portfolio state that owns them.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from portfolio_orchestrator.models.domain import DomainConfig, utc_now

DomainStatus = Literal[
    "pending",
    "validating",
    "initializing",
    "provisioning-storage",
    "provisioning-secrets",
    "deploying",
    "verifying",
    "succeeded",
    "failed",
    "rolled-back",
]

# Forward-only progression rank. succeeded and failed share a rank so that
# neither can be reached from the other.
STATUS_RANK: Dict[str, int] = {
    "pending": 0,
    "validating": 1,
    "initializing": 2,
    "provisioning-storage": 3,
    "provisioning-secrets": 4,
    "deploying": 5,
    "verifying": 6,
    "succeeded": 7,
    "failed": 7,
    "rolled-back": 8,
}

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "rolled-back"})


def is_allowed_transition(current: str, new: str) -> bool:
    """Whether a domain may move from current to new status."""
    if current == new:
        return True
    if new == "rolled-back":
        return True
    if current in TERMINAL_STATUSES:
        return False
    return STATUS_RANK[new] > STATUS_RANK[current]


class AuditEntry(BaseModel):
    """Immutable audit trail record."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=utc_now)
    orchestration_id: str
    event: str = Field(..., description="Event type, e.g. DOMAIN_DEPLOYED")
    domain: str = Field(..., description="Domain name or ALL for portfolio events")
    details: Dict[str, Any] = Field(default_factory=dict)
    sequence_number: int = Field(..., description="1-based position in the audit log")


class RollbackAction(BaseModel):
    """A recorded reversible side effect."""

    model_config = ConfigDict(frozen=True)

    action_id: str = Field(..., description="Unique action identifier")
    type: str = Field(..., description="Handler key, e.g. manifest_patch, storage_created")
    description: str = Field(..., description="Human-readable description")
    domain: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now)


class DomainDeploymentState(BaseModel):
    """
    Deployment state of one domain within one run.

    Owned exclusively by whichever operation is processing the domain.
    Mutated only through StateManager.update_domain_state().
    """

    domain: str
    status: DomainStatus = Field(default="pending")
    deployment_id: str = Field(..., description="Unique deployment identifier")
    environment: str = Field(default="production")
    created_at: str = Field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_updated: Optional[str] = None
    current_phase: Optional[str] = Field(None, description="Phase currently executing")
    failed_phase: Optional[str] = Field(None, description="Phase that failed the domain")
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    rollback_actions: List[RollbackAction] = Field(default_factory=list)
    resolved_config: Optional[DomainConfig] = None
    provisioned_resources: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Binding name -> {name, id, shared} of the resource bound to this domain",
    )
    deployment_url: Optional[str] = None
    worker_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class PortfolioMetrics(BaseModel):
    """Counts of terminal statuses across the portfolio."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    rolled_back: int = 0


class PortfolioState(BaseModel):
    """All state for a single orchestration run."""

    orchestration_id: str
    environment: str = Field(default="production")
    started_at: str = Field(default_factory=utc_now)
    ended_at: Optional[str] = None
    domain_states: Dict[str, DomainDeploymentState] = Field(default_factory=dict)
    rollback_plan: List[RollbackAction] = Field(
        default_factory=list, description="Head is the most recently recorded action"
    )
    audit_log: List[AuditEntry] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[misc]
    @property
    def metrics(self) -> PortfolioMetrics:
        """Derived from domain statuses on every read."""
        statuses = [state.status for state in self.domain_states.values()]
        return PortfolioMetrics(
            total=len(statuses),
            completed=statuses.count("succeeded"),
            failed=statuses.count("failed"),
            rolled_back=statuses.count("rolled-back"),
        )
