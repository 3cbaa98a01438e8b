"""
Protocols for the external collaborators the orchestrator delegates to.

The orchestration core never performs deploy mechanics itself. These protocols
define what each collaborator promises, so the core can be driven by real
platform adapters or by test doubles.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from portfolio_orchestrator.models import DomainConfig, DomainDescriptor, HealthResult


@runtime_checkable
class DeploymentExecutor(Protocol):
    """Publishes the artifact for one domain."""

    async def deploy(self, domain: str, config: DomainConfig) -> Dict[str, Any]:
        """
        Publish the artifact.

        Promises:
        - Returns a dict with at least "url"; "worker_url" when the platform reports one
        - Raises DeploymentExecutionError with a typed ErrorCategory on failure
        """
        ...

    async def rollback(self, domain: str, config: DomainConfig) -> None:
        """
        Revert the most recent publish for the domain.

        Promises:
        - Raises DeploymentExecutionError on failure
        """
        ...


@runtime_checkable
class ResourceProvisioner(Protocol):
    """Relational storage lifecycle on the platform."""

    async def exists(self, name: str) -> bool:
        """Whether a database with this name exists."""
        ...

    async def get_id(self, name: str) -> str:
        """Platform ID of an existing database."""
        ...

    async def create(self, name: str) -> str:
        """
        Create a database and return its ID.

        Promises:
        - Raises ProvisioningError with a typed ErrorCategory on failure
        """
        ...

    async def delete(self, name: str) -> None:
        """Delete a database created by this run."""
        ...

    async def apply_migrations(self, binding_name: str, environment: str, remote: bool) -> int:
        """Apply pending migrations and return how many were applied."""
        ...


@runtime_checkable
class SecretDistributor(Protocol):
    """Generates and distributes secret material for a domain."""

    async def generate_secrets(
        self, domain: str, environment: str, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Generate secrets for a domain.

        Promises:
        - Returns {"secrets": {name: ...}, "distribution_files": [...]}
        - Secret values are never logged by the caller
        """
        ...


@runtime_checkable
class HealthChecker(Protocol):
    """Single probe against a service health endpoint."""

    async def check_health(self, url: str) -> HealthResult:
        """
        Probe the health endpoint at url.

        Promises:
        - Never raises; network failures are reported as status "error"
        """
        ...


@runtime_checkable
class ConfigStore(Protocol):
    """Key-value view over the deployment manifest consumed by the executor."""

    def get(self, key: str, default: Any = None) -> Any:
        """Read a dotted key."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Write a dotted key."""
        ...

    def delete(self, key: str) -> None:
        """Remove a dotted key if present."""
        ...

    async def save(self) -> None:
        """Persist pending changes."""
        ...


@runtime_checkable
class RollbackExecutor(Protocol):
    """Reverses a completed domain deployment during coordinated rollback."""

    async def rollback_domain(
        self,
        domain: str,
        reason: str,
        deployment_id: Optional[str] = None,
        coordination_id: Optional[str] = None,
    ) -> Any:
        """Roll back everything recorded for the domain in the current run."""
        ...


@runtime_checkable
class DiscoverySource(Protocol):
    """A channel that yields domain descriptors."""

    name: str

    async def discover(self) -> List[DomainDescriptor]:
        """
        Discover domains.

        Promises:
        - May raise; the caller records the error against this source only
        """
        ...
