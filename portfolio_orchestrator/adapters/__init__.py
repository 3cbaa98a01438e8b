"""
Default adapters for the external collaborators.
"""

from portfolio_orchestrator.adapters.discovery import (
    YamlPortfolioSource,
    descriptor_from_entry,
    save_portfolio,
)
from portfolio_orchestrator.adapters.executor import (
    CommandDeploymentExecutor,
    CommandResourceProvisioner,
    CommandRunner,
    classify_error,
)
from portfolio_orchestrator.adapters.health import HttpHealthChecker
from portfolio_orchestrator.adapters.manifest import YamlManifestStore
from portfolio_orchestrator.adapters.noop import (
    NoOpDeploymentExecutor,
    NoOpResourceProvisioner,
    NoOpSecretDistributor,
)

__all__ = [
    "CommandDeploymentExecutor",
    "CommandResourceProvisioner",
    "CommandRunner",
    "HttpHealthChecker",
    "NoOpDeploymentExecutor",
    "NoOpResourceProvisioner",
    "NoOpSecretDistributor",
    "YamlManifestStore",
    "YamlPortfolioSource",
    "classify_error",
    "descriptor_from_entry",
    "save_portfolio",
]
