"""
Cross-domain coordination.

Portfolio-scale layer above the orchestrator: discovers domains from several
sources, derives the dependency graph, reconciles shared resources and runs
coordinated four-phase deployments with coordinated rollback.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from portfolio_orchestrator.adapters import YamlPortfolioSource, save_portfolio
from portfolio_orchestrator.adapters.discovery import DomainEntry, descriptor_from_entry
from portfolio_orchestrator.config.settings import PortfolioSettings
from portfolio_orchestrator.deployment import (
    StateManager,
    call_with_timeout,
    generate_operation_id,
)
from portfolio_orchestrator.exceptions import (
    CompatibilityError,
    CoordinationAbortedError,
    DependencyCycleError,
)
from portfolio_orchestrator.models import (
    COORDINATION_PHASES,
    Coordination,
    CoordinationFailure,
    DiscoveryError,
    DiscoveryResult,
    DomainDescriptor,
    DomainResult,
    HealthResult,
    PortfolioHealthReport,
    SharedResource,
    normalize_domain_name,
    utc_now,
)
from portfolio_orchestrator.orchestrator import MultiDomainOrchestrator
from portfolio_orchestrator.protocols import DiscoverySource, RollbackExecutor
from portfolio_orchestrator.utils.log_sanitizer import sanitize_domain, sanitize_for_log

logger = logging.getLogger(__name__)


class CrossDomainCoordinator:
    """
    Coordinates deployments across a portfolio of domains.

    Domains are kept in registration order. That order decides which member
    of a shared resource provisions it; the other members follow it.
    """

    def __init__(
        self,
        settings: Optional[PortfolioSettings] = None,
        orchestrator: Optional[MultiDomainOrchestrator] = None,
        rollback_executor: Optional[RollbackExecutor] = None,
        sources: Optional[List[DiscoverySource]] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            settings: Orchestrator configuration
            orchestrator: Orchestrator that deploys individual domains
            rollback_executor: Reverses completed domains (defaults to the orchestrator)
            sources: Live discovery sources; the persisted portfolio file is added
                     when configured
        """
        self.settings = settings or (orchestrator.settings if orchestrator else PortfolioSettings())
        self.config = self.settings.coordination
        self.environment = self.settings.environment
        self.orchestrator = orchestrator or MultiDomainOrchestrator(self.settings)
        self.rollback_executor: RollbackExecutor = rollback_executor or self.orchestrator

        if sources is None:
            sources = []
            if self.config.portfolio_file:
                sources.append(
                    YamlPortfolioSource(self.config.portfolio_file, environment=self.environment)
                )
        self.sources: List[DiscoverySource] = sources

        self.session_id = generate_operation_id("coord")
        self.registry: Dict[str, DomainDescriptor] = {}
        self.dependencies: Dict[str, List[str]] = {}
        self.shared_resources: Dict[str, SharedResource] = {}
        self.health_status: Dict[str, HealthResult] = {}
        self.coordinations: List[Coordination] = []

    @property
    def state_manager(self) -> StateManager:
        """State of the orchestrator's current run."""
        return self.orchestrator.state_manager

    def _audit(self, event: str, details: Optional[Dict[str, Any]] = None) -> None:
        payload = {"session_id": self.session_id, "portfolio": self.config.portfolio_name}
        self.state_manager.log_audit_event(event, "ALL", {**payload, **(details or {})})

    # Discovery and registry

    async def discover_portfolio(
        self,
        domains: Optional[List[DomainEntry]] = None,
        sources: Optional[List[DiscoverySource]] = None,
    ) -> DiscoveryResult:
        """
        Build the registry from an explicit list and discovery sources.

        The explicit list comes first, then each source in order. A name seen
        earlier is never overridden by a later source. A failing source or
        entry is recorded and the rest of discovery continues.

        Args:
            domains: Explicit domain names or mappings
            sources: Discovery sources (defaults to the configured ones)

        Returns:
            Discovered domains, per-source errors and the dependency graph
        """
        start = time.monotonic()
        result = DiscoveryResult(session_id=generate_operation_id())
        seen: Set[str] = set()

        def _add(descriptor: DomainDescriptor) -> None:
            if descriptor.name in seen:
                logger.debug(f"Ignoring duplicate {descriptor.name} from {descriptor.source}")
                return
            seen.add(descriptor.name)
            result.domains.append(descriptor)

        try:
            for entry in domains or []:
                try:
                    _add(descriptor_from_entry(entry, "provided", self.environment))
                except Exception as e:
                    logger.warning(f"Skipping domain entry {sanitize_for_log(entry)}: {e}")
                    result.errors.append(
                        DiscoveryError(source="provided", domain=str(entry), error=str(e))
                    )

            for source in sources if sources is not None else self.sources:
                try:
                    for descriptor in await source.discover():
                        _add(descriptor)
                except Exception as e:
                    logger.error(f"Discovery source {source.name} failed: {e}")
                    result.errors.append(DiscoveryError(source=source.name, error=str(e)))

            for descriptor in result.domains:
                self.register_domain(descriptor)

            if self.config.enable_dependency_resolution:
                self.build_dependency_graph()
        except Exception as e:
            logger.error(f"Portfolio discovery failed: {e}")
            self._audit(
                "PORTFOLIO_DISCOVERY_FAILED", {"discovery_id": result.session_id, "error": str(e)}
            )
            raise

        result.dependencies = {k: list(v) for k, v in self.dependencies.items()}
        result.duration = time.monotonic() - start

        self._audit(
            "PORTFOLIO_DISCOVERY_COMPLETED",
            {
                "discovery_id": result.session_id,
                "domains_found": result.total_domains,
                "errors": len(result.errors),
                "duration": round(result.duration, 3),
            },
        )
        logger.info(
            f"Portfolio discovery completed: {result.total_domains} domains, "
            f"{len(result.errors)} errors"
        )
        return result

    def register_domain(self, descriptor: DomainDescriptor) -> DomainDescriptor:
        """
        Add a domain to the registry.

        Registering a known name only merges its metadata.
        """
        existing = self.registry.get(descriptor.name)
        if existing is not None:
            if descriptor.metadata:
                existing = existing.refresh_metadata(descriptor.metadata)
                self.registry[descriptor.name] = existing
            return existing

        self.registry[descriptor.name] = descriptor
        logger.info(f"Registered domain {sanitize_domain(descriptor.name)} ({descriptor.source})")
        return descriptor

    def build_dependency_graph(self) -> Dict[str, List[str]]:
        """
        Derive dependencies from declarations and shared resources.

        Every member of a shared resource depends on the members registered
        before it, so the first member provisions and the rest follow.

        Returns:
            Domain -> domains it depends on (only domains with dependencies)
        """
        graph: Dict[str, List[str]] = {}
        shared: Dict[str, SharedResource] = {}

        for name, descriptor in self.registry.items():
            graph[name] = [dep for dep in dict.fromkeys(descriptor.depends_on) if dep != name]

            for ref in descriptor.shared_resource_refs:
                key = f"{descriptor.environment}/{ref.key}"
                resource = shared.get(key)
                if resource is None:
                    previous = self.shared_resources.get(key)
                    resource = SharedResource(
                        key=key,
                        name=ref.name,
                        kind=ref.kind,
                        environment=descriptor.environment,
                        binding=ref.binding,
                        resource_id=previous.resource_id if previous else None,
                        created=previous.created if previous else False,
                    )
                    shared[key] = resource
                if name not in resource.domains:
                    resource.domains.append(name)

        if self.config.enable_shared_resources:
            for resource in shared.values():
                for index, member in enumerate(resource.domains):
                    for earlier in resource.domains[:index]:
                        if earlier not in graph[member]:
                            graph[member].append(earlier)

        self.shared_resources = shared
        self.dependencies = {name: deps for name, deps in graph.items() if deps}

        for name, deps in self.dependencies.items():
            logger.debug(f"{name} depends on {', '.join(deps)}")
        logger.info(f"Dependency graph built: {len(self.dependencies)} domains have dependencies")
        return self.dependencies

    def resolve_dependency_order(self, domains: List[str]) -> List[str]:
        """
        Order domains so every in-scope dependency comes first.

        Dependencies outside the given domains are ignored.

        Raises:
            DependencyCycleError: The in-scope graph has a cycle
        """
        scope = set(domains)
        ordered: List[str] = []
        visited: Set[str] = set()
        path: List[str] = []

        def visit(domain: str) -> None:
            if domain in path:
                raise DependencyCycleError(path[path.index(domain) :] + [domain])
            if domain in visited:
                return
            path.append(domain)
            for dep in self.dependencies.get(domain, []):
                if dep in scope:
                    visit(dep)
            path.pop()
            visited.add(domain)
            ordered.append(domain)

        for domain in domains:
            if domain not in visited:
                visit(domain)
        return ordered

    def create_deployment_batches(self, order: List[str]) -> List[List[str]]:
        """
        Chunk an ordered domain list into concurrent batches.

        A batch is closed early when the next domain depends on one of its
        members, so no domain runs concurrently with its own dependency.
        """
        size = self.config.max_concurrent_deployments
        batches: List[List[str]] = []
        current: List[str] = []

        for domain in order:
            depends_on_current = any(dep in current for dep in self.dependencies.get(domain, []))
            if current and (len(current) >= size or depends_on_current):
                batches.append(current)
                current = []
            current.append(domain)

        if current:
            batches.append(current)
        return batches

    # Coordination

    async def coordinate_multi_domain_deployment(
        self, domains: Optional[List[str]] = None, options: Optional[Dict[str, Any]] = None
    ) -> Coordination:
        """
        Run a coordinated deployment: validation, preparation, deployment, verification.

        An unrecoverable phase aborts the remaining phases and, when enabled,
        rolls back every domain that had completed.

        Args:
            domains: Domains in scope (defaults to the whole registry)
            options: Run options (force_refresh, skip_verification)

        Returns:
            The coordination record

        Raises:
            DependencyCycleError: The in-scope dependency graph has a cycle
            CompatibilityError: The in-scope domains cannot be deployed together
        """
        requested = domains if domains is not None else list(self.registry)
        names = list(dict.fromkeys(normalize_domain_name(d) for d in requested))

        for name in names:
            if name not in self.registry:
                self.register_domain(
                    DomainDescriptor(name=name, environment=self.environment, source="coordination")
                )
        # The registry may have changed since discovery
        self.build_dependency_graph()

        # A run that already tracked domains is finished; each coordination gets its own
        if self.state_manager.portfolio_state.domain_states:
            self.orchestrator.new_run()

        coordination = Coordination(
            coordination_id=generate_operation_id(),
            domains=names,
            options=dict(options or {}),
        )
        coordination.metrics.total_domains = len(names)
        self.coordinations.append(coordination)

        logger.info(
            f"Coordinating deployment of {len(names)} domains "
            f"(coordination {coordination.coordination_id})"
        )
        self._audit(
            "MULTI_DOMAIN_DEPLOYMENT_STARTED",
            {"coordination_id": coordination.coordination_id, "domains": names},
        )
        start = time.monotonic()

        phase_runners = {
            "validation": self._validation_phase,
            "preparation": self._preparation_phase,
            "deployment": self._deployment_phase,
            "verification": self._verification_phase,
        }

        try:
            for phase in COORDINATION_PHASES:
                coordination.current_phase = phase
                phase_start = time.monotonic()
                await phase_runners[phase](coordination)
                coordination.completed_phases.append(phase)
                logger.info(f"Phase {phase} completed ({time.monotonic() - phase_start:.2f}s)")
        except (DependencyCycleError, CompatibilityError) as e:
            logger.error(f"Pre-flight check failed: {e}")
            coordination.status = "failed"
            coordination.error = str(e)
            self._finish(coordination, start)
            self._audit(
                "MULTI_DOMAIN_DEPLOYMENT_FAILED",
                {
                    "coordination_id": coordination.coordination_id,
                    "phase": coordination.current_phase,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            await self.state_manager.save_snapshot()
            raise
        except CoordinationAbortedError as e:
            logger.error(f"Coordinated deployment aborted in {e.phase}: {e}")
            coordination.status = "failed"
            coordination.error = str(e)
            if self.config.enable_auto_rollback:
                await self.coordinate_rollback(coordination)
        except Exception as e:
            logger.error(f"Coordinated deployment failed: {e}")
            coordination.status = "failed"
            coordination.error = str(e)
            if self.config.enable_auto_rollback:
                await self.coordinate_rollback(coordination)
            self._finish(coordination, start)
            await self.state_manager.save_snapshot()
            raise
        else:
            coordination.status = "success" if not coordination.results.failed else "partial"

        self._finish(coordination, start)
        self._audit(
            "MULTI_DOMAIN_DEPLOYMENT_COMPLETED",
            {
                "coordination_id": coordination.coordination_id,
                "status": coordination.status,
                "total_domains": coordination.metrics.total_domains,
                "successful": len(coordination.results.successful),
                "failed": len(coordination.results.failed),
                "rolled_back": len(coordination.results.rolled_back),
                "duration": round(coordination.duration, 3),
            },
        )
        await self.state_manager.save_snapshot()

        logger.info(
            f"Multi-domain deployment {coordination.status} ({coordination.duration:.2f}s): "
            f"{len(coordination.results.successful)} successful, "
            f"{len(coordination.results.failed)} failed"
        )
        return coordination

    def _finish(self, coordination: Coordination, start: float) -> None:
        coordination.ended_at = utc_now()
        coordination.duration = time.monotonic() - start
        coordination.metrics.completed = len(coordination.results.successful)
        coordination.metrics.failed = len(coordination.results.failed)
        coordination.metrics.rolled_back = len(coordination.results.rolled_back)

    def _fail_domain(
        self,
        coordination: Coordination,
        domain: str,
        phase: str,
        error: str,
        error_type: Optional[str] = None,
    ) -> None:
        if domain in coordination.results.failed_domains():
            return
        coordination.results.failed.append(
            CoordinationFailure(domain=domain, phase=phase, error=error, error_type=error_type)
        )
        state = self.state_manager.get_domain_state(domain)
        if state is not None and not state.is_terminal:
            self.state_manager.update_domain_state(
                domain,
                {
                    "status": "failed",
                    "failed_phase": phase,
                    "current_phase": None,
                    "errors": [*state.errors, {"phase": phase, "error": error, "type": error_type}],
                },
            )
        logger.error(f"{sanitize_domain(domain)} failed in {phase}: {error}")

    def _fail_dependents(self, coordination: Coordination, phase: str) -> None:
        """Fail every in-scope domain with a failed in-scope dependency, transitively."""
        scope = set(coordination.domains)
        changed = True
        while changed:
            changed = False
            failed = set(coordination.results.failed_domains())
            for domain in coordination.active_domains():
                deps = self.dependencies.get(domain, [])
                broken = [d for d in deps if d in scope and d in failed]
                if broken:
                    self._fail_domain(
                        coordination,
                        domain,
                        phase,
                        f"Dependency failed: {', '.join(broken)}",
                        "DependencyFailed",
                    )
                    changed = True

    def _target_environment(self, coordination: Coordination) -> str:
        return coordination.options.get("environment") or self.environment

    async def _validation_phase(self, coordination: Coordination) -> None:
        await self.orchestrator.initialize(coordination.domains)

        validations = await asyncio.gather(
            *[self.orchestrator.resolver.validate_prerequisites(d) for d in coordination.domains]
        )
        for validation in validations:
            if not validation.valid:
                self._fail_domain(
                    coordination,
                    validation.domain,
                    "validation",
                    f"Validation failed: {', '.join(validation.issues)}",
                    "ValidationError",
                )

        if self.config.enable_cross_validation:
            await self._validate_compatibility(coordination)

        if self.config.enable_dependency_resolution:
            coordination.deployment_order = self.resolve_dependency_order(coordination.domains)
            self._fail_dependents(coordination, "validation")
        else:
            coordination.deployment_order = list(coordination.domains)

    async def _validate_compatibility(self, coordination: Coordination) -> None:
        environment = self._target_environment(coordination)
        descriptors = [self.registry[d] for d in coordination.domains if d in self.registry]

        mismatched = [d.name for d in descriptors if d.environment != environment]
        if mismatched:
            raise CompatibilityError(
                f"Domains target a different environment than {environment}: "
                f"{', '.join(mismatched)}",
                issues=[f"{name}: environment mismatch" for name in mismatched],
            )

        declared: Dict[str, Any] = {}
        conflicts: List[str] = []
        for descriptor in descriptors:
            for ref in descriptor.shared_resource_refs:
                previous = declared.get(ref.name)
                if previous is None:
                    declared[ref.name] = (descriptor.name, ref)
                elif previous[1].kind != ref.kind or previous[1].binding != ref.binding:
                    conflicts.append(
                        f"{ref.name}: declared as {previous[1].kind}/{previous[1].binding} by "
                        f"{previous[0]} and {ref.kind}/{ref.binding} by {descriptor.name}"
                    )
        if conflicts:
            raise CompatibilityError(
                f"Conflicting shared resource declarations: {'; '.join(conflicts)}",
                issues=conflicts,
            )

        versions = {d.version for d in descriptors if d.version}
        if len(versions) > 1:
            coordination.warnings.append(
                f"Mixed artifact versions in scope: {', '.join(sorted(versions))}"
            )

        for issue in await self._cors_issues(coordination.domains, environment):
            coordination.warnings.append(issue)
            logger.warning(f"CORS: {issue}")

    async def _cors_issues(self, domains: List[str], environment: str) -> List[str]:
        issues: List[str] = []
        for domain in domains:
            descriptor = self.registry.get(domain)
            if descriptor is None or not descriptor.cors_origins:
                continue
            for other in domains:
                if other == domain:
                    continue
                config = await self.orchestrator.resolver.resolve_domain(other, environment)
                other_url = config.custom_url
                if not self._origin_allowed(descriptor.cors_origins, other, other_url):
                    issues.append(f"{domain} does not allow CORS from {other} ({other_url})")
        return issues

    @staticmethod
    def _origin_allowed(origins: List[str], other: str, other_url: str) -> bool:
        for origin in origins:
            origin = origin.rstrip("/")
            if origin == "*" or origin in (other_url, f"https://{other}"):
                return True
            if "*" in origin:
                suffix = origin.replace("https://", "").replace("*", "")
                if other_url.endswith(suffix) or other.endswith(suffix.lstrip(".")):
                    return True
        return False

    async def _preparation_phase(self, coordination: Coordination) -> None:
        if self.config.enable_shared_resources:
            await self._coordinate_shared_databases(coordination)
            await self._prepare_shared_secrets(coordination)
            self._fail_dependents(coordination, "preparation")
        await self._prepare_configurations(coordination)
        self._fail_dependents(coordination, "preparation")

    def _resources_in_scope(self, coordination: Coordination, kind: str) -> List[SharedResource]:
        active = set(coordination.active_domains())
        return [
            resource
            for resource in self.shared_resources.values()
            if resource.kind == kind and any(d in active for d in resource.domains)
        ]

    async def _coordinate_shared_databases(self, coordination: Coordination) -> None:
        provisioner = self.orchestrator.provisioner
        timeout = self.settings.coordinator.phase_timeout_seconds

        for resource in self._resources_in_scope(coordination, "database"):
            active = set(coordination.active_domains())
            members = [d for d in resource.domains if d in active]
            provider = members[0]

            try:
                if resource.resource_id is None:
                    if self.orchestrator.dry_run:
                        logger.info(f"DRY RUN: would provision shared database {resource.name}")
                        resource.resource_id = f"dry-run-{resource.name}"
                    elif await call_with_timeout(
                        provisioner.exists(resource.name), timeout, provider, "exists"
                    ):
                        resource.resource_id = await call_with_timeout(
                            provisioner.get_id(resource.name), timeout, provider, "get_id"
                        )
                    else:
                        resource.resource_id = await call_with_timeout(
                            provisioner.create(resource.name), timeout, provider, "create"
                        )
                        resource.created = True
                        self.state_manager.record_rollback_action(
                            provider,
                            "storage_created",
                            f"Created shared database {resource.name}",
                            {"database_name": resource.name},
                        )
            except Exception as e:
                for member in members:
                    self._fail_domain(
                        coordination,
                        member,
                        "preparation",
                        f"Shared database {resource.name} unavailable: {e}",
                        type(e).__name__,
                    )
                continue

            for member in members:
                state = self.state_manager.require_domain_state(member)
                resources = dict(state.provisioned_resources)
                resources[resource.binding] = {
                    "name": resource.name,
                    "id": resource.resource_id,
                    "shared": True,
                }
                self.state_manager.update_domain_state(member, {"provisioned_resources": resources})

            self._audit(
                "SHARED_RESOURCE_PROVISIONED",
                {
                    "coordination_id": coordination.coordination_id,
                    "resource": resource.key,
                    "resource_id": resource.resource_id,
                    "provider": provider,
                    "domains": members,
                    "created": resource.created,
                },
            )

    async def _prepare_shared_secrets(self, coordination: Coordination) -> None:
        distributor = self.orchestrator.secret_distributor
        timeout = self.settings.coordinator.phase_timeout_seconds
        environment = self._target_environment(coordination)

        for resource in self._resources_in_scope(coordination, "secret"):
            active = set(coordination.active_domains())
            members = [d for d in resource.domains if d in active]

            try:
                if not self.orchestrator.dry_run:
                    await call_with_timeout(
                        distributor.generate_secrets(
                            members[0],
                            environment,
                            {"shared": True, "name": resource.name, "domains": members},
                        ),
                        timeout,
                        members[0],
                        "generate_secrets",
                    )
            except Exception as e:
                for member in members:
                    self._fail_domain(
                        coordination,
                        member,
                        "preparation",
                        f"Shared secret {resource.name} unavailable: {e}",
                        type(e).__name__,
                    )
                continue

            for member in members:
                state = self.state_manager.require_domain_state(member)
                shared = [*state.metadata.get("shared_secrets", []), resource.name]
                self.state_manager.update_domain_state(
                    member, {"metadata": {**state.metadata, "shared_secrets": shared}}
                )
            self._audit(
                "SHARED_SECRETS_PREPARED",
                {
                    "coordination_id": coordination.coordination_id,
                    "secret": resource.name,
                    "domains": members,
                },
            )

    async def _prepare_configurations(self, coordination: Coordination) -> None:
        environment = self._target_environment(coordination)
        force_refresh = bool(coordination.options.get("force_refresh", False))

        for domain in coordination.active_domains():
            try:
                config = await self.orchestrator.resolver.resolve_domain(
                    domain, environment, force_refresh=force_refresh
                )
                self.state_manager.update_domain_state(domain, {"resolved_config": config})
            except Exception as e:
                self._fail_domain(coordination, domain, "preparation", str(e), type(e).__name__)

    async def _deployment_phase(self, coordination: Coordination) -> None:
        active = set(coordination.active_domains())
        order = [d for d in coordination.deployment_order if d in active]
        coordination.batches = self.create_deployment_batches(order)

        if not order:
            logger.warning("No domains left to deploy")
            return

        result = await self.orchestrator.deploy_portfolio(
            order, dependencies=self.dependencies, batches=coordination.batches
        )

        coordination.results.successful.extend(result.successful)
        for failure in result.failed:
            self._fail_domain(
                coordination,
                failure.domain,
                "deployment",
                failure.error or "unknown error",
                failure.error_type,
            )

        success_rate = len(result.successful) / len(order)
        if result.failed and success_rate < self.config.rollback_threshold:
            raise CoordinationAbortedError(
                f"Deployment success rate {success_rate:.0%} is below the rollback threshold "
                f"{self.config.rollback_threshold:.0%}",
                "deployment",
            )

    async def _verification_phase(self, coordination: Coordination) -> None:
        if coordination.options.get("skip_verification") or self.settings.skip_tests:
            logger.info("Skipping cross-domain verification")
            return
        if self.orchestrator.dry_run:
            logger.info("DRY RUN: would verify deployed domains")
            return

        successful = list(coordination.results.successful)
        checks = await asyncio.gather(
            *[self._probe(r.worker_url or r.url) for r in successful if r.worker_url or r.url]
        )
        for result in checks:
            if not result.healthy:
                coordination.warnings.append(
                    f"{result.url} is {result.status} after deployment"
                )

        if len(successful) > 1:
            for warning in await self._integration_warnings(coordination):
                coordination.warnings.append(warning)
                logger.warning(f"Integration check: {warning}")

    async def _probe(self, url: str) -> HealthResult:
        try:
            return await asyncio.wait_for(
                self.orchestrator.health_checker.check_health(url),
                timeout=self.settings.coordinator.phase_timeout_seconds,
            )
        except Exception as e:
            return HealthResult(url=url, status="error", details={"error": str(e)})

    async def _integration_warnings(self, coordination: Coordination) -> List[str]:
        warnings: List[str] = []
        deployed = coordination.results.successful_domains()

        for resource in self.shared_resources.values():
            members = [d for d in resource.domains if d in deployed]
            bound = set()
            for member in members:
                state = self.state_manager.require_domain_state(member)
                bound.add((state.provisioned_resources.get(resource.binding) or {}).get("id"))
            if resource.kind == "database" and len(members) > 1 and len(bound) > 1:
                warnings.append(f"Members of {resource.name} are bound to different resources")

        warnings.extend(
            await self._cors_issues(deployed, self._target_environment(coordination))
        )
        return warnings

    async def coordinate_rollback(self, coordination: Coordination) -> List[DomainResult]:
        """
        Roll back every successful domain of a coordination, newest first.

        A failing domain rollback is logged and the others still run.

        Returns:
            Domains rolled back
        """
        rollback_id = generate_operation_id("rollback")
        self._audit(
            "CROSS_DOMAIN_ROLLBACK_START",
            {
                "coordination_id": coordination.coordination_id,
                "rollback_id": rollback_id,
                "domains_to_rollback": len(coordination.results.successful),
            },
        )

        for deployment in reversed(coordination.results.successful):
            try:
                await self.rollback_executor.rollback_domain(
                    deployment.domain,
                    "cross-domain-failure",
                    deployment_id=deployment.deployment_id,
                    coordination_id=coordination.coordination_id,
                )
                coordination.results.rolled_back.append(deployment)
                logger.info(f"Rolled back {sanitize_domain(deployment.domain)}")
            except Exception as e:
                logger.error(f"{sanitize_domain(deployment.domain)}: rollback failed - {e}")

        coordination.metrics.rolled_back = len(coordination.results.rolled_back)
        self._audit(
            "CROSS_DOMAIN_ROLLBACK_COMPLETED",
            {
                "coordination_id": coordination.coordination_id,
                "rollback_id": rollback_id,
                "rolled_back_domains": len(coordination.results.rolled_back),
            },
        )
        return coordination.results.rolled_back

    # Monitoring

    async def get_domain_url(self, domain: str) -> str:
        state = self.state_manager.get_domain_state(domain)
        if state is not None and (state.worker_url or state.deployment_url):
            return state.worker_url or state.deployment_url  # type: ignore[return-value]
        descriptor = self.registry.get(domain)
        if descriptor is not None and descriptor.service_config.get("url"):
            return descriptor.service_config["url"]
        return (await self.orchestrator.resolver.resolve_domain(domain)).custom_url

    async def monitor_portfolio_health(self) -> PortfolioHealthReport:
        """Probe every registered domain concurrently."""
        report = PortfolioHealthReport(session_id=generate_operation_id("health"))
        domains = list(self.registry)

        async def _check(domain: str) -> HealthResult:
            return await self._probe(await self.get_domain_url(domain))

        results = await asyncio.gather(*[_check(d) for d in domains])
        for domain, result in zip(domains, results):
            self.health_status[domain] = result
            report.checks[domain] = result

        report.total = len(domains)
        report.healthy = sum(1 for r in results if r.status == "healthy")
        report.unhealthy = sum(1 for r in results if r.status == "unhealthy")
        report.errors = sum(1 for r in results if r.status == "error")

        logger.info(
            f"Portfolio health: {report.healthy}/{report.total} healthy, "
            f"{report.unhealthy} unhealthy, {report.errors} errors"
        )
        return report

    def get_portfolio_statistics(self) -> Dict[str, Any]:
        completed = sum(len(c.results.successful) for c in self.coordinations)
        failed = sum(len(c.results.failed) for c in self.coordinations)
        rolled_back = sum(len(c.results.rolled_back) for c in self.coordinations)
        return {
            "portfolio": {
                "name": self.config.portfolio_name,
                "session_id": self.session_id,
                "total_domains": len(self.registry),
                "domains": list(self.registry),
                "shared_resources": {k: r.domains for k, r in self.shared_resources.items()},
                "dependencies": {k: list(v) for k, v in self.dependencies.items()},
            },
            "health": {
                "monitored": len(self.health_status),
                "healthy": sum(1 for h in self.health_status.values() if h.healthy),
                "unhealthy": sum(1 for h in self.health_status.values() if not h.healthy),
            },
            "deployments": {
                "coordinations": len(self.coordinations),
                "total": completed + failed,
                "completed": completed,
                "failed": failed,
                "rolled_back": rolled_back,
            },
        }

    def save_portfolio_file(self, path: Optional[str] = None) -> str:
        """Persist the registry to the portfolio file."""
        target = path or self.config.portfolio_file
        if not target:
            raise ValueError("No portfolio file configured")
        save_portfolio(target, self.registry.values(), self.config.portfolio_name)
        return target
