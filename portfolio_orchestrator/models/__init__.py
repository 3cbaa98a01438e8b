"""
Pydantic models for the portfolio orchestrator.

These models provide type-safe data structures for descriptors, run state,
deployment results and coordination episodes.
"""

from portfolio_orchestrator.models.coordination import (
    COORDINATION_PHASES,
    Coordination,
    CoordinationFailure,
    CoordinationMetrics,
    CoordinationResults,
    DiscoveryError,
    DiscoveryResult,
    PortfolioHealthReport,
    SharedResource,
)
from portfolio_orchestrator.models.deployment import (
    BatchResult,
    DeploymentSummary,
    DomainResult,
    HealthResult,
    PortfolioResult,
    RollbackFailure,
    RollbackResult,
    VerificationResult,
)
from portfolio_orchestrator.models.domain import (
    DomainConfig,
    DomainDescriptor,
    DomainResolution,
    SharedResourceRef,
    ValidationResult,
    normalize_domain_name,
    utc_now,
)
from portfolio_orchestrator.models.state import (
    STATUS_RANK,
    TERMINAL_STATUSES,
    AuditEntry,
    DomainDeploymentState,
    DomainStatus,
    PortfolioMetrics,
    PortfolioState,
    RollbackAction,
    is_allowed_transition,
)

__all__ = [
    # Domain
    "DomainConfig",
    "DomainDescriptor",
    "DomainResolution",
    "SharedResourceRef",
    "ValidationResult",
    "normalize_domain_name",
    "utc_now",
    # State
    "AuditEntry",
    "DomainDeploymentState",
    "DomainStatus",
    "PortfolioMetrics",
    "PortfolioState",
    "RollbackAction",
    "STATUS_RANK",
    "TERMINAL_STATUSES",
    "is_allowed_transition",
    # Deployment
    "BatchResult",
    "DeploymentSummary",
    "DomainResult",
    "HealthResult",
    "PortfolioResult",
    "RollbackFailure",
    "RollbackResult",
    "VerificationResult",
    # Coordination
    "COORDINATION_PHASES",
    "Coordination",
    "CoordinationFailure",
    "CoordinationMetrics",
    "CoordinationResults",
    "DiscoveryError",
    "DiscoveryResult",
    "PortfolioHealthReport",
    "SharedResource",
]
