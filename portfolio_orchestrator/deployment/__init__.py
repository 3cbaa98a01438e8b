"""
Deployment coordination module.

Provides per-domain deployment management including:
- Fixed phase pipeline with structured per-domain failures
- Concurrency-bounded batches
- Run state, audit log and LIFO rollback plan

Usage:
    from portfolio_orchestrator.deployment import DeploymentCoordinator, StateManager

    state_manager = StateManager(environment="staging")
    state_manager.initialize_domain_states(["example.com"])
    result = await DeploymentCoordinator().deploy_single_domain(
        "example.com", state_manager, handlers
    )
"""

from portfolio_orchestrator.deployment.coordinator import (
    DEPLOYMENT_PHASES,
    PHASE_STATUS,
    DeploymentCoordinator,
    PhaseHandlers,
)
from portfolio_orchestrator.deployment.helpers import (
    build_deployment_summary,
    call_with_timeout,
    chunk_domains,
    error_record,
)
from portfolio_orchestrator.deployment.state import (
    StateManager,
    generate_deployment_id,
    generate_operation_id,
    generate_orchestration_id,
)

__all__ = [
    # Coordinator
    "DEPLOYMENT_PHASES",
    "PHASE_STATUS",
    "DeploymentCoordinator",
    "PhaseHandlers",
    # State
    "StateManager",
    "generate_deployment_id",
    "generate_operation_id",
    "generate_orchestration_id",
    # Helper functions
    "build_deployment_summary",
    "call_with_timeout",
    "chunk_domains",
    "error_record",
]
