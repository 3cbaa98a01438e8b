"""
Multi-domain orchestrator.

Composition root that binds domain-specific side-effect handlers into the
deployment coordinator's phase slots and exposes single-domain and
whole-portfolio entry points.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from portfolio_orchestrator.adapters import (
    CommandDeploymentExecutor,
    CommandResourceProvisioner,
    HttpHealthChecker,
    NoOpDeploymentExecutor,
    NoOpResourceProvisioner,
    NoOpSecretDistributor,
    YamlManifestStore,
)
from portfolio_orchestrator.config.settings import PortfolioSettings
from portfolio_orchestrator.deployment import (
    DeploymentCoordinator,
    PhaseHandlers,
    StateManager,
    call_with_timeout,
)
from portfolio_orchestrator.exceptions import (
    ProvisioningError,
    RollbackActionError,
    UnknownDomainError,
    ValidationError,
)
from portfolio_orchestrator.logging_config import LogContext
from portfolio_orchestrator.models import (
    DomainConfig,
    DomainDeploymentState,
    DomainResult,
    PortfolioResult,
    RollbackAction,
    RollbackResult,
    VerificationResult,
    normalize_domain_name,
)
from portfolio_orchestrator.protocols import (
    ConfigStore,
    DeploymentExecutor,
    HealthChecker,
    ResourceProvisioner,
    SecretDistributor,
)
from portfolio_orchestrator.resolver import DomainResolver
from portfolio_orchestrator.utils.log_sanitizer import sanitize_domain

logger = logging.getLogger(__name__)

MAX_WORKER_NAME_LENGTH = 63


class MultiDomainOrchestrator:
    """
    Deploys a portfolio of domains through the phase pipeline.

    Each instance owns one run: one StateManager, one audit log and one
    rollback plan.
    """

    def __init__(
        self,
        settings: Optional[PortfolioSettings] = None,
        executor: Optional[DeploymentExecutor] = None,
        provisioner: Optional[ResourceProvisioner] = None,
        secret_distributor: Optional[SecretDistributor] = None,
        health_checker: Optional[HealthChecker] = None,
        config_store: Optional[ConfigStore] = None,
        resolver: Optional[DomainResolver] = None,
        state_manager: Optional[StateManager] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Collaborators not supplied are built from settings: platform CLI
        adapters normally, no-op adapters in dry-run mode.

        Args:
            settings: Orchestrator configuration
            executor: Publishes artifacts
            provisioner: Database lifecycle
            secret_distributor: Generates and distributes secrets
            health_checker: Probes deployed services
            config_store: Deployment manifest
            resolver: Domain resolver
            state_manager: State of this run
        """
        self.settings = settings or PortfolioSettings()
        self.environment = self.settings.environment
        self.dry_run = self.settings.dry_run
        self.domains: List[str] = [normalize_domain_name(d) for d in self.settings.domains]

        timeout = self.settings.coordinator.phase_timeout_seconds
        platform = self.settings.platform

        if executor is None:
            executor = (
                NoOpDeploymentExecutor()
                if self.dry_run
                else CommandDeploymentExecutor(platform, self.environment, timeout)
            )
        if provisioner is None:
            provisioner = (
                NoOpResourceProvisioner()
                if self.dry_run
                else CommandResourceProvisioner(platform, timeout)
            )

        self.executor = executor
        self.provisioner = provisioner
        self.secret_distributor = secret_distributor or NoOpSecretDistributor()
        self.health_checker = health_checker or HttpHealthChecker()
        self.config_store = config_store or YamlManifestStore(
            Path(platform.service_path) / platform.manifest_path
        )

        self.resolver = resolver or DomainResolver(
            self.settings.resolver,
            platform,
            environment=self.environment,
            service_name=self.settings.service_name,
        )
        self.state_manager = state_manager or self._new_state_manager()
        self.coordinator = DeploymentCoordinator(
            self.settings.coordinator,
            environment=self.environment,
            dry_run=self.dry_run,
            skip_tests=self.settings.skip_tests,
        )

        self.handlers = PhaseHandlers(
            validation=self._validate_domain,
            initialization=self._initialize_domain,
            storage=self._provision_storage,
            secrets=self._provision_secrets,
            deployment=self._deploy_domain,
            verification=self._verify_domain,
            repair=self._repair_storage_binding,
        )
        self.rollback_handlers = {
            "manifest_patch": self._rollback_manifest_patch,
            "storage_created": self._rollback_storage_created,
            "deployment": self._rollback_deployment,
        }

    def _new_state_manager(self) -> StateManager:
        return StateManager(
            environment=self.environment,
            state_dir=self.settings.state_dir,
            dry_run=self.dry_run,
            persistence_enabled=self.settings.persistence_enabled,
        )

    def new_run(self) -> StateManager:
        """
        Start a new run with empty state, a new orchestration ID and an empty
        rollback plan. The previous run's state is left as it was written.

        Returns:
            State manager of the new run
        """
        previous = self.state_manager.orchestration_id
        self.state_manager = self._new_state_manager()
        self.domains = [normalize_domain_name(d) for d in self.settings.domains]
        logger.info(f"Started run {self.orchestration_id} (previous run {previous})")
        return self.state_manager

    @property
    def orchestration_id(self) -> str:
        return self.state_manager.orchestration_id

    @property
    def timeout(self) -> float:
        return self.settings.coordinator.phase_timeout_seconds

    @property
    def database_binding(self) -> str:
        return self.settings.resolver.database_binding

    async def initialize(self, domains: Optional[List[str]] = None) -> List[str]:
        """
        Populate state for the portfolio and pre-resolve configurations.

        Safe to call repeatedly; domains already known keep their state.

        Args:
            domains: Domains to add to the portfolio

        Returns:
            All domains in the portfolio
        """
        for domain in (normalize_domain_name(d) for d in domains or []):
            if domain not in self.domains:
                self.domains.append(domain)

        self.state_manager.initialize_domain_states(self.domains)

        unresolved = [
            domain
            for domain in self.domains
            if self.state_manager.require_domain_state(domain).resolved_config is None
        ]
        if unresolved:
            resolutions = await self.resolver.resolve_multiple(unresolved)
            for domain, resolution in resolutions.items():
                if resolution.config is not None:
                    self.state_manager.update_domain_state(
                        domain, {"resolved_config": resolution.config}
                    )

        logger.info(
            f"Orchestrator {self.orchestration_id} initialized with {len(self.domains)} domains "
            f"({self.environment}{', dry run' if self.dry_run else ''})"
        )
        return list(self.domains)

    async def deploy_single_domain(self, domain: str) -> DomainResult:
        """
        Deploy one domain that is already part of the portfolio.

        Raises:
            UnknownDomainError: The domain was not initialized
        """
        domain = normalize_domain_name(domain)
        if self.state_manager.get_domain_state(domain) is None:
            raise UnknownDomainError(domain)
        result = await self.coordinator.deploy_single_domain(
            domain, self.state_manager, self.handlers
        )
        await self.state_manager.save_snapshot()
        return result

    async def deploy_portfolio(
        self,
        domains: Optional[List[str]] = None,
        dependencies: Optional[Dict[str, List[str]]] = None,
        batches: Optional[List[List[str]]] = None,
    ) -> PortfolioResult:
        """
        Deploy domains in concurrency-bounded batches.

        Args:
            domains: Domains to deploy (defaults to the whole portfolio)
            dependencies: Domain -> domains it depends on
            batches: Precomputed batches

        Returns:
            Portfolio deployment result
        """
        if domains is None:
            targets = list(self.domains)
        else:
            targets = list(dict.fromkeys(normalize_domain_name(d) for d in domains))
        await self.initialize(targets)

        with LogContext(logger, orchestration_id=self.orchestration_id):
            result = await self.coordinator.deploy_portfolio(
                targets,
                self.state_manager,
                self.handlers,
                dependencies=dependencies,
                batches=batches,
            )
        await self.state_manager.save_snapshot()
        return result

    def get_rollback_plan(self, domain: Optional[str] = None) -> List[RollbackAction]:
        return self.state_manager.get_rollback_plan(domain)

    async def execute_rollback(self, domain: Optional[str] = None) -> RollbackResult:
        """Reverse recorded side effects, newest first."""
        result = await self.state_manager.execute_rollback(self.rollback_handlers, domain)
        await self.state_manager.save_snapshot()
        return result

    async def rollback_domain(
        self,
        domain: str,
        reason: str,
        deployment_id: Optional[str] = None,
        coordination_id: Optional[str] = None,
    ) -> RollbackResult:
        """
        Roll back everything recorded for one domain.

        Args:
            domain: Domain to roll back
            reason: Why the rollback was requested
            deployment_id: Deployment being reverted, for the audit trail
            coordination_id: Coordination run requesting it, for the audit trail

        Returns:
            Rollback result

        Raises:
            RollbackActionError: At least one action could not be reversed
        """
        self.state_manager.log_audit_event(
            "DOMAIN_ROLLBACK_REQUESTED",
            domain,
            {"reason": reason, "deployment_id": deployment_id, "coordination_id": coordination_id},
        )
        result = await self.execute_rollback(domain)
        if result.failed:
            raise RollbackActionError(
                f"{len(result.failed)} rollback actions failed for {domain}",
                domain,
                result.failed[0].action_id,
            )
        return result

    async def complete(self) -> Dict[str, Any]:
        """Close the run and write the final snapshot."""
        self.state_manager.mark_portfolio_completed()
        await self.state_manager.save_snapshot()
        return self.state_manager.get_portfolio_summary()

    def get_portfolio_stats(self) -> Dict[str, Any]:
        stats = self.state_manager.get_portfolio_summary()
        stats["coordinator"] = self.coordinator.get_stats()
        stats["resolver_cache"] = self.resolver.get_cache_stats()
        stats["rollback_actions"] = len(self.state_manager.get_rollback_plan())
        return stats

    # Phase handlers

    async def _config_for(self, domain: str, state: DomainDeploymentState) -> DomainConfig:
        if state.resolved_config is not None:
            return state.resolved_config
        config = await self.resolver.resolve_domain(domain, self.environment)
        self.state_manager.update_domain_state(domain, {"resolved_config": config})
        return config

    async def _validate_domain(self, domain: str, state: DomainDeploymentState) -> Any:
        validation = await self.resolver.validate_prerequisites(domain)
        for warning in validation.warnings:
            logger.warning(f"{sanitize_domain(domain)}: {warning}")
        if not validation.valid:
            raise ValidationError(
                f"Validation failed for {domain}: {'; '.join(validation.issues)}",
                domain,
                validation.issues,
            )
        return validation

    def _check_configuration(self, config: DomainConfig) -> List[str]:
        issues: List[str] = []
        if self.environment == "production" and not config.custom_url.startswith("https://"):
            issues.append(f"Production URL should use HTTPS: {config.custom_url}")
        if len(config.worker_name) > MAX_WORKER_NAME_LENGTH:
            issues.append(
                f"Worker name exceeds {MAX_WORKER_NAME_LENGTH} characters: {config.worker_name}"
            )
        if not self.dry_run and not self.settings.platform.account_id:
            issues.append("Platform account ID not configured")
        if not self.settings.platform.zone_name:
            issues.append("No DNS zone configured; custom domain must be attached manually")
        return issues

    async def _initialize_domain(self, domain: str, state: DomainDeploymentState) -> Any:
        config = await self._config_for(domain, state)
        issues = self._check_configuration(config)
        if issues:
            for issue in issues:
                logger.warning(f"{sanitize_domain(domain)}: {issue}")
            self.state_manager.log_audit_event(
                "VALIDATION_WARNINGS", domain, {"issues": issues, "environment": self.environment}
            )
        return config

    async def _bind_database(
        self, domain: str, config: DomainConfig, binding: str, name: str, database_id: str
    ) -> None:
        key = f"domains.{config.clean_name}.{config.environment}.databases.{binding}"
        previous = self.config_store.get(key)
        self.config_store.set(key, {"database_name": name, "database_id": database_id})
        await self.config_store.save()

        self.state_manager.record_rollback_action(
            domain,
            "manifest_patch",
            f"Bound {binding} to {name} in manifest",
            {"key": key, "previous": previous},
        )

    async def _ensure_database(self, domain: str, name: str) -> Dict[str, Any]:
        if await call_with_timeout(self.provisioner.exists(name), self.timeout, domain, "exists"):
            database_id = await call_with_timeout(
                self.provisioner.get_id(name), self.timeout, domain, "get_id"
            )
            return {"name": name, "id": database_id, "created": False}

        database_id = await call_with_timeout(
            self.provisioner.create(name), self.timeout, domain, "create"
        )
        self.state_manager.record_rollback_action(
            domain, "storage_created", f"Created database {name}", {"database_name": name}
        )
        logger.info(f"Created database {name} for {sanitize_domain(domain)}")
        return {"name": name, "id": database_id, "created": True}

    async def _provision_storage(self, domain: str, state: DomainDeploymentState) -> Any:
        config = await self._config_for(domain, state)
        binding = self.database_binding
        resources = dict(state.provisioned_resources)

        if binding in resources:
            # Provisioned by portfolio preparation; bind only
            database = {**resources[binding], "created": False}
        else:
            database = await self._ensure_database(domain, config.database_name)

        await self._bind_database(domain, config, binding, database["name"], database["id"])

        # Shared resources under other bindings were provisioned during preparation
        for shared_binding, shared in resources.items():
            if shared_binding != binding and shared.get("shared"):
                await self._bind_database(
                    domain, config, shared_binding, shared["name"], shared["id"]
                )

        try:
            applied = await call_with_timeout(
                self.provisioner.apply_migrations(binding, self.environment, True),
                self.timeout,
                domain,
                "migrations",
            )
        except Exception as e:
            logger.warning(f"Migration warning for {sanitize_domain(domain)}: {e}")
            self.state_manager.add_domain_warning(domain, f"Migrations not applied: {e}")
            applied = None

        resources[binding] = {
            "name": database["name"],
            "id": database["id"],
            "shared": bool(database.get("shared", False)),
        }
        self.state_manager.update_domain_state(domain, {"provisioned_resources": resources})
        self.state_manager.log_audit_event(
            "DATABASE_CREATED" if database["created"] else "DATABASE_FOUND",
            domain,
            {
                "database_name": database["name"],
                "database_id": database["id"],
                "environment": self.environment,
                "migrations_applied": applied,
                "created": database["created"],
            },
        )
        return database

    async def _provision_secrets(self, domain: str, state: DomainDeploymentState) -> Any:
        try:
            result = await call_with_timeout(
                self.secret_distributor.generate_secrets(
                    domain,
                    self.environment,
                    {"shared_secrets": state.metadata.get("shared_secrets", [])},
                ),
                self.timeout,
                domain,
                "generate_secrets",
            )
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(f"Secret generation failed for {domain}: {e}", domain) from e

        names = sorted((result or {}).get("secrets", {}).keys())
        self.state_manager.log_audit_event(
            "SECRETS_GENERATED",
            domain,
            {
                "secrets": names,
                "distribution_files": len((result or {}).get("distribution_files", [])),
            },
        )
        return {"secrets": names}

    async def _deploy_domain(self, domain: str, state: DomainDeploymentState) -> Any:
        config = await self._config_for(domain, state)
        result = await call_with_timeout(
            self.executor.deploy(domain, config), self.timeout, domain, "deploy"
        )
        result = dict(result or {})
        url = result.get("url") or config.custom_url
        worker_url = result.get("worker_url")

        self.state_manager.record_rollback_action(
            domain,
            "deployment",
            f"Deployed {config.worker_name}",
            {"worker_name": config.worker_name, "url": url},
        )
        self.state_manager.update_domain_state(
            domain, {"deployment_url": url, "worker_url": worker_url}
        )
        self.state_manager.log_audit_event(
            "WORKER_DEPLOYED", domain, {"url": url, "worker_url": worker_url}
        )
        return {"url": url, "worker_url": worker_url}

    async def _verify_domain(
        self, domain: str, state: DomainDeploymentState
    ) -> Optional[VerificationResult]:
        # Worker URL is reachable immediately; the custom domain may still need DNS
        url = state.worker_url or state.deployment_url
        if not url:
            logger.warning(f"No deployment URL for {sanitize_domain(domain)}, skipping health check")
            return None
        return await self.coordinator.verify_health(
            domain, url, self.health_checker, self.state_manager
        )

    async def _repair_storage_binding(self, domain: str, phase: str, error: Exception) -> None:
        config = await self.resolver.resolve_domain(domain, self.environment, force_refresh=True)
        self.state_manager.update_domain_state(domain, {"resolved_config": config})
        state = self.state_manager.require_domain_state(domain)

        binding = self.database_binding
        if binding in state.provisioned_resources:
            database = state.provisioned_resources[binding]
        else:
            database = await self._ensure_database(domain, config.database_name)

        await self._bind_database(domain, config, binding, database["name"], database["id"])
        self.state_manager.log_audit_event(
            "STORAGE_REPAIRED",
            domain,
            {"phase": phase, "database_name": database["name"], "error": str(error)},
        )
        logger.info(f"Re-bound {binding} to {database['name']} for {sanitize_domain(domain)}")

    # Rollback handlers

    async def _rollback_manifest_patch(self, action: RollbackAction) -> None:
        key = action.payload["key"]
        previous = action.payload.get("previous")
        try:
            if previous is None:
                self.config_store.delete(key)
            else:
                self.config_store.set(key, previous)
            await self.config_store.save()
        except Exception as e:
            raise RollbackActionError(
                f"Failed to restore manifest key {key}: {e}", action.domain, action.action_id
            ) from e

    async def _rollback_storage_created(self, action: RollbackAction) -> None:
        name = action.payload["database_name"]
        try:
            await call_with_timeout(self.provisioner.delete(name), self.timeout, action.domain, "delete")
        except Exception as e:
            raise RollbackActionError(
                f"Failed to delete database {name}: {e}", action.domain, action.action_id
            ) from e

    async def _rollback_deployment(self, action: RollbackAction) -> None:
        state = self.state_manager.require_domain_state(action.domain)
        try:
            config = await self._config_for(action.domain, state)
            await call_with_timeout(
                self.executor.rollback(action.domain, config), self.timeout, action.domain, "rollback"
            )
        except Exception as e:
            raise RollbackActionError(
                f"Failed to roll back deployment of {action.domain}: {e}",
                action.domain,
                action.action_id,
            ) from e
