"""Portfolio orchestrator - coordinated deployments across many domains."""

__version__ = "1.0.0"

from .cross_domain import CrossDomainCoordinator
from .orchestrator import MultiDomainOrchestrator

__all__ = ["CrossDomainCoordinator", "MultiDomainOrchestrator", "__version__"]
