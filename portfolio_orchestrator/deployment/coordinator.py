"""
Deployment coordinator.

Runs the fixed phase pipeline for one domain and drives many domains through
it in concurrency-bounded batches. Phase work is performed by injected
handlers; the coordinator only sequences, converts failures into structured
results and applies the single repair-and-retry policy.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from portfolio_orchestrator.config.settings import CoordinatorSettings
from portfolio_orchestrator.deployment.helpers import (
    build_deployment_summary,
    chunk_domains,
    error_record,
)
from portfolio_orchestrator.deployment.state import StateManager
from portfolio_orchestrator.exceptions import (
    DeploymentExecutionError,
    ProvisioningError,
    VerificationWarning,
)
from portfolio_orchestrator.logging_config import log_domain_operation
from portfolio_orchestrator.models import (
    BatchResult,
    DomainDeploymentState,
    DomainResult,
    HealthResult,
    PortfolioResult,
    VerificationResult,
)
from portfolio_orchestrator.protocols import HealthChecker
from portfolio_orchestrator.utils.log_sanitizer import sanitize_domain

logger = logging.getLogger(__name__)

DEPLOYMENT_PHASES = [
    "validation",
    "initialization",
    "storage",
    "secrets",
    "deployment",
    "verification",
]

PHASE_STATUS: Dict[str, str] = {
    "validation": "validating",
    "initialization": "initializing",
    "storage": "provisioning-storage",
    "secrets": "provisioning-secrets",
    "deployment": "deploying",
    "verification": "verifying",
}

PhaseHandler = Callable[[str, DomainDeploymentState], Awaitable[Any]]
# Called with (domain, failing phase, error) before the single retry
RepairHandler = Callable[[str, str, Exception], Awaitable[Any]]


@dataclass
class PhaseHandlers:
    """Handlers bound to the coordinator's phase slots. Unbound phases are skipped."""

    validation: Optional[PhaseHandler] = None
    initialization: Optional[PhaseHandler] = None
    storage: Optional[PhaseHandler] = None
    secrets: Optional[PhaseHandler] = None
    deployment: Optional[PhaseHandler] = None
    verification: Optional[PhaseHandler] = None
    repair: Optional[RepairHandler] = None

    def for_phase(self, phase: str) -> Optional[PhaseHandler]:
        return getattr(self, phase)


class DeploymentCoordinator:
    """
    Drives domains through the deployment phase pipeline.

    A failing phase stops only that domain. Batches run sequentially with a
    fixed pause between them; domains within a batch run concurrently.
    """

    def __init__(
        self,
        settings: Optional[CoordinatorSettings] = None,
        environment: str = "production",
        dry_run: bool = False,
        skip_tests: bool = False,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            settings: Parallelism, pauses, health check and timeout settings
            environment: Target environment (for logging)
            dry_run: Log phases without invoking handlers
            skip_tests: Skip the verification phase
        """
        self.settings = settings or CoordinatorSettings()
        self.environment = environment
        self.dry_run = dry_run
        self.skip_tests = skip_tests
        self.phases = list(DEPLOYMENT_PHASES)

    async def deploy_single_domain(
        self, domain: str, state_manager: StateManager, handlers: PhaseHandlers
    ) -> DomainResult:
        """
        Run every phase for one domain.

        Never raises for a phase failure; the failure is recorded in the
        domain's state and returned as a structured result.

        Args:
            domain: Domain to deploy
            state_manager: State of the current run
            handlers: Phase handlers

        Returns:
            Structured per-domain result
        """
        state = state_manager.require_domain_state(domain)
        if state.is_terminal:
            logger.info(f"Skipping {sanitize_domain(domain)}: already {state.status}")
            return DomainResult(
                domain=domain,
                success=state.status == "succeeded",
                deployment_id=state.deployment_id,
                status=state.status,
                url=state.deployment_url,
                worker_url=state.worker_url,
                skipped=True,
                error=None if state.status == "succeeded" else f"Domain already {state.status}",
            )

        start = time.monotonic()
        log_domain_operation(
            "deployment_started",
            domain,
            {"deployment_id": state.deployment_id, "environment": self.environment},
        )

        phases_completed: List[str] = []
        url: Optional[str] = None

        for phase in self.phases:
            try:
                state_manager.update_domain_state(
                    domain, {"status": PHASE_STATUS[phase], "current_phase": phase}
                )
                outcome = await self._execute_phase(domain, phase, state_manager, handlers)
            except Exception as e:
                return self._fail_domain(domain, phase, e, state_manager, phases_completed, start)

            if phase == "deployment" and isinstance(outcome, dict) and outcome.get("url"):
                url = outcome["url"]
            phases_completed.append(phase)

        final = state_manager.update_domain_state(
            domain, {"status": "succeeded", "current_phase": None}
        )
        duration = time.monotonic() - start

        state_manager.log_audit_event(
            "DOMAIN_DEPLOYED",
            domain,
            {"deployment_id": final.deployment_id, "duration": round(duration, 3), "url": url},
        )
        log_domain_operation("deployed", domain, {"duration_s": round(duration, 2)})
        logger.info(f"{sanitize_domain(domain)} deployed successfully in {duration:.1f}s")

        return DomainResult(
            domain=domain,
            success=True,
            deployment_id=final.deployment_id,
            status=final.status,
            url=url or final.deployment_url,
            worker_url=final.worker_url,
            duration=duration,
            phases_completed=phases_completed,
            warnings=list(final.warnings),
        )

    async def _execute_phase(
        self,
        domain: str,
        phase: str,
        state_manager: StateManager,
        handlers: PhaseHandlers,
    ) -> Any:
        handler = handlers.for_phase(phase)
        if handler is None:
            logger.debug(f"No handler for phase {phase}, skipping")
            return None

        if self.dry_run:
            logger.info(f"DRY RUN: would execute {phase} for {sanitize_domain(domain)}")
            return None

        if phase == "verification" and self.skip_tests:
            logger.info(f"Skipping {phase} for {sanitize_domain(domain)} (tests disabled)")
            return None

        logger.debug(f"Phase {phase} for {sanitize_domain(domain)}")
        try:
            return await handler(domain, state_manager.require_domain_state(domain))
        except (ProvisioningError, DeploymentExecutionError) as e:
            if not e.recoverable or handlers.repair is None:
                raise

            logger.warning(
                f"Recoverable {e.category.value} error in {phase} for "
                f"{sanitize_domain(domain)}, repairing and retrying once: {e}"
            )
            state_manager.log_audit_event(
                "REPAIR_ATTEMPTED",
                domain,
                {"phase": phase, "category": e.category.value, "error": str(e)},
            )
            await handlers.repair(domain, phase, e)
            return await handler(domain, state_manager.require_domain_state(domain))

    def _fail_domain(
        self,
        domain: str,
        phase: str,
        error: Exception,
        state_manager: StateManager,
        phases_completed: List[str],
        start: float,
    ) -> DomainResult:
        state = state_manager.require_domain_state(domain)
        failed = state_manager.update_domain_state(
            domain,
            {
                "status": "failed",
                "failed_phase": phase,
                "current_phase": None,
                "errors": [*state.errors, error_record(phase, error)],
            },
        )
        duration = time.monotonic() - start

        state_manager.log_audit_event(
            "DOMAIN_FAILED",
            domain,
            {"phase": phase, "error": str(error), "error_type": type(error).__name__},
        )
        log_domain_operation("failed", domain, {"phase": phase, "error": str(error)}, "ERROR")
        logger.error(f"{sanitize_domain(domain)} deployment failed in {phase}: {error}")

        return DomainResult(
            domain=domain,
            success=False,
            deployment_id=failed.deployment_id,
            status=failed.status,
            phase=phase,
            error=str(error),
            error_type=type(error).__name__,
            duration=duration,
            phases_completed=phases_completed,
            warnings=list(failed.warnings),
        )

    def _fail_by_dependency(
        self, domain: str, failed_dependencies: List[str], state_manager: StateManager
    ) -> DomainResult:
        message = f"Dependency failed: {', '.join(failed_dependencies)}"
        state = state_manager.get_domain_state(domain)
        deployment_id = None

        if state is not None and not state.is_terminal:
            updated = state_manager.update_domain_state(
                domain,
                {
                    "status": "failed",
                    "failed_phase": "dependency",
                    "errors": [
                        *state.errors,
                        {"phase": "dependency", "error": message, "type": "DependencyFailed"},
                    ],
                },
            )
            deployment_id = updated.deployment_id
            state_manager.log_audit_event(
                "DOMAIN_SKIPPED", domain, {"failed_dependencies": failed_dependencies}
            )

        logger.warning(f"Skipping {sanitize_domain(domain)}: {message}")
        return DomainResult(
            domain=domain,
            success=False,
            deployment_id=deployment_id,
            status="failed",
            phase="dependency",
            error=message,
            error_type="DependencyFailed",
            skipped=True,
        )

    async def deploy_portfolio(
        self,
        domains: List[str],
        state_manager: StateManager,
        handlers: PhaseHandlers,
        dependencies: Optional[Dict[str, List[str]]] = None,
        batches: Optional[List[List[str]]] = None,
    ) -> PortfolioResult:
        """
        Deploy many domains in sequential, concurrency-bounded batches.

        Later batches proceed despite earlier failures, except that a domain
        whose in-scope dependency already failed is marked failed without
        being attempted.

        Args:
            domains: Domains in deployment order
            state_manager: State of the current run
            handlers: Phase handlers
            dependencies: Domain -> domains it depends on
            batches: Precomputed batches; defaults to chunking by parallelism

        Returns:
            Successful and failed results, per-batch results and a summary
        """
        start = time.monotonic()
        batches = batches if batches is not None else self.create_deployment_batches(domains)
        dependencies = dependencies or {}
        in_scope = set(domains)

        logger.info(
            f"Starting portfolio deployment: {len(domains)} domains in {len(batches)} batches "
            f"(parallelism {self.settings.parallel_deployments})"
        )

        result = PortfolioResult()
        failed_domains: set = set()

        for index, batch in enumerate(batches):
            logger.info(f"Batch {index + 1}/{len(batches)}: {', '.join(batch)}")
            batch_result = BatchResult(index=index, domains=list(batch))

            runnable: List[str] = []
            for domain in batch:
                failed_dependencies = [
                    dep
                    for dep in dependencies.get(domain, [])
                    if dep in in_scope and dep in failed_domains
                ]
                if failed_dependencies:
                    batch_result.failed.append(
                        self._fail_by_dependency(domain, failed_dependencies, state_manager)
                    )
                else:
                    runnable.append(domain)

            outcomes = await asyncio.gather(
                *[self.deploy_single_domain(domain, state_manager, handlers) for domain in runnable],
                return_exceptions=True,
            )

            for domain, outcome in zip(runnable, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Unexpected error deploying {sanitize_domain(domain)}: {outcome}")
                    outcome = DomainResult(
                        domain=domain,
                        success=False,
                        status="failed",
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
                if outcome.success:
                    batch_result.successful.append(outcome)
                else:
                    batch_result.failed.append(outcome)

            failed_domains.update(r.domain for r in batch_result.failed)
            result.batches.append(batch_result)
            result.successful.extend(batch_result.successful)
            result.failed.extend(batch_result.failed)

            if index < len(batches) - 1 and self.settings.batch_pause_seconds > 0:
                logger.debug(f"Pausing {self.settings.batch_pause_seconds}s between batches")
                await asyncio.sleep(self.settings.batch_pause_seconds)

        result.total_duration = time.monotonic() - start
        result.summary = build_deployment_summary(
            len(domains), result.successful, result.failed, len(batches)
        )

        logger.info(
            f"Portfolio deployment complete: {result.summary.successful}/{result.summary.total} "
            f"succeeded ({result.summary.success_rate}%), {result.summary.failed} failed, "
            f"{result.total_duration:.1f}s"
        )
        for failure in result.failed:
            logger.warning(f"Failed: {sanitize_domain(failure.domain)}: {failure.error}")

        return result

    def create_deployment_batches(
        self, domains: List[str], size: Optional[int] = None
    ) -> List[List[str]]:
        return chunk_domains(domains, size or self.settings.parallel_deployments)

    async def verify_health(
        self,
        domain: str,
        url: str,
        checker: HealthChecker,
        state_manager: Optional[StateManager] = None,
    ) -> VerificationResult:
        """
        Probe a deployed domain until healthy or out of retries.

        Exhausting retries is not a failure: a VerificationWarning is logged
        and recorded in the domain's state and in the audit log.

        Args:
            domain: Domain being verified
            url: Base URL of the deployed service
            checker: Health checker
            state_manager: State of the current run, if any

        Returns:
            Verification result
        """
        retries = max(1, self.settings.health_check_retries)
        last: Optional[HealthResult] = None

        for attempt in range(1, retries + 1):
            try:
                last = await asyncio.wait_for(
                    checker.check_health(url), timeout=self.settings.phase_timeout_seconds
                )
            except asyncio.TimeoutError:
                last = HealthResult(url=url, status="error", details={"error": "timeout"})

            if last.healthy:
                logger.info(
                    f"Health check passed for {sanitize_domain(domain)} "
                    f"({last.status_code}) on attempt {attempt}"
                )
                if state_manager:
                    state_manager.log_audit_event(
                        "HEALTH_CHECK_PASSED",
                        domain,
                        {
                            "url": url,
                            "status": last.status_code,
                            "response_time_ms": last.response_time_ms,
                            "attempt": attempt,
                        },
                    )
                return VerificationResult(
                    domain=domain, url=url, passed=True, attempts=attempt, last_result=last
                )

            logger.warning(
                f"Health check attempt {attempt}/{retries} for {sanitize_domain(domain)} "
                f"returned {last.status}"
            )
            if state_manager:
                state_manager.log_audit_event(
                    "HEALTH_CHECK_WARNING",
                    domain,
                    {"url": url, "status": last.status_code, "attempt": attempt},
                )
            if attempt < retries:
                await asyncio.sleep(self.settings.health_check_interval_seconds)

        reason = last.status if last else "no result"
        if last and last.details and last.details.get("error"):
            reason = str(last.details["error"])
        warning = VerificationWarning(domain, url, retries, reason)
        logger.warning(str(warning))

        if state_manager:
            state_manager.add_domain_warning(domain, str(warning))
            state_manager.log_audit_event(
                "HEALTH_CHECK_FAILED",
                domain,
                {"url": url, "attempts": retries, "error": reason},
            )

        return VerificationResult(
            domain=domain,
            url=url,
            passed=False,
            attempts=retries,
            warning=str(warning),
            last_result=last,
        )

    def validate_configuration(self) -> Dict[str, Any]:
        issues: List[str] = []
        warnings: List[str] = []
        parallel = self.settings.parallel_deployments

        if parallel < 1:
            issues.append("parallel_deployments must be at least 1")
        if parallel > 10:
            issues.append("parallel_deployments exceeds recommended maximum of 10")
        if self.settings.batch_pause_seconds < 0:
            issues.append("batch_pause_seconds cannot be negative")
        if parallel > 5:
            warnings.append("High parallelism may cause rate limiting")

        return {"valid": not issues, "issues": issues, "warnings": warnings}

    def get_stats(self) -> Dict[str, Any]:
        return {
            "parallel_deployments": self.settings.parallel_deployments,
            "batch_pause_seconds": self.settings.batch_pause_seconds,
            "phases_count": len(self.phases),
            "dry_run": self.dry_run,
            "skip_tests": self.skip_tests,
            "environment": self.environment,
        }
