"""
No-op collaborators for dry runs and platforms without managed storage.

Null object implementations that satisfy the collaborator protocols without
touching any external system.
"""

import logging
from typing import Any, Dict, Optional

from portfolio_orchestrator.models import DomainConfig

logger = logging.getLogger(__name__)


class NoOpResourceProvisioner:
    """
    A Null Object implementation of the ResourceProvisioner.

    Reports every database as existing with a deterministic placeholder ID.
    """

    def __init__(self) -> None:
        logger.info("Storage provisioning is disabled. Using No-Op Resource Provisioner.")

    async def exists(self, name: str) -> bool:
        return True

    async def get_id(self, name: str) -> str:
        return f"noop-{name}"

    async def create(self, name: str) -> str:
        logger.debug(f"Provisioning disabled, skipping create of {name}")
        return f"noop-{name}"

    async def delete(self, name: str) -> None:
        logger.debug(f"Provisioning disabled, skipping delete of {name}")

    async def apply_migrations(self, binding_name: str, environment: str, remote: bool) -> int:
        return 0


class NoOpSecretDistributor:
    """A Null Object implementation of the SecretDistributor."""

    async def generate_secrets(
        self, domain: str, environment: str, options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        logger.debug(f"Secret distribution disabled, skipping secrets for {domain}")
        return {"secrets": {}, "distribution_files": []}


class NoOpDeploymentExecutor:
    """A Null Object implementation of the DeploymentExecutor."""

    async def deploy(self, domain: str, config: DomainConfig) -> Dict[str, Any]:
        logger.debug(f"Deployment disabled, skipping publish for {domain}")
        return {"url": config.custom_url, "worker_url": None}

    async def rollback(self, domain: str, config: DomainConfig) -> None:
        logger.debug(f"Deployment disabled, skipping rollback for {domain}")
