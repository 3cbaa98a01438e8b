"""
Tests for the per-domain phase pipeline and batched portfolio deployment.
"""

import asyncio
import math
from unittest.mock import AsyncMock, Mock, patch

import pytest

from portfolio_orchestrator.config.settings import CoordinatorSettings
from portfolio_orchestrator.deployment import (
    DEPLOYMENT_PHASES,
    DeploymentCoordinator,
    PhaseHandlers,
    StateManager,
    call_with_timeout,
    chunk_domains,
)
from portfolio_orchestrator.exceptions import (
    DeploymentExecutionError,
    ErrorCategory,
    ProvisioningError,
    ValidationError,
)
from portfolio_orchestrator.models import HealthResult


@pytest.fixture
def coordinator_settings():
    return CoordinatorSettings(
        parallel_deployments=2,
        batch_pause_seconds=0,
        health_check_retries=3,
        health_check_interval_seconds=0,
        phase_timeout_seconds=5,
    )


@pytest.fixture
def coordinator(coordinator_settings):
    return DeploymentCoordinator(coordinator_settings)


@pytest.fixture
def state_manager():
    return StateManager()


def recording_handlers(log):
    """Handlers that append (phase, domain) to log."""

    def make(phase):
        async def handler(domain, state):
            log.append((phase, domain))
            if phase == "deployment":
                return {"url": f"https://{domain}"}
            return None

        return handler

    return PhaseHandlers(**{phase: make(phase) for phase in DEPLOYMENT_PHASES})


class TestBatching:
    """Test batch construction."""

    @pytest.mark.parametrize("n,k", [(0, 2), (1, 3), (3, 2), (6, 3), (7, 3), (10, 1)])
    def test_batch_count(self, n, k):
        domains = [f"d{i}.com" for i in range(n)]
        batches = chunk_domains(domains, k)

        assert len(batches) == math.ceil(n / k)
        assert all(len(b) == k for b in batches[:-1])
        assert [d for b in batches for d in b] == domains

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            chunk_domains(["a.com"], 0)

    def test_default_size_is_parallelism(self, coordinator):
        batches = coordinator.create_deployment_batches(["a.com", "b.com", "c.com"])
        assert batches == [["a.com", "b.com"], ["c.com"]]


class TestSingleDomain:
    """Test the phase pipeline for one domain."""

    @pytest.mark.asyncio
    async def test_all_phases_in_order(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        log = []

        result = await coordinator.deploy_single_domain(
            "a.com", state_manager, recording_handlers(log)
        )

        assert result.success
        assert result.status == "succeeded"
        assert result.url == "https://a.com"
        assert [phase for phase, _ in log] == DEPLOYMENT_PHASES
        assert result.phases_completed == DEPLOYMENT_PHASES
        assert state_manager.get_audit_log(event="DOMAIN_DEPLOYED", domain="a.com")

    @pytest.mark.asyncio
    async def test_failure_is_structured(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        handlers = recording_handlers([])
        handlers.storage = AsyncMock(side_effect=ProvisioningError("no quota", "a.com"))

        result = await coordinator.deploy_single_domain("a.com", state_manager, handlers)

        assert not result.success
        assert result.phase == "storage"
        assert result.error_type == "ProvisioningError"
        assert result.phases_completed == ["validation", "initialization"]

        state = state_manager.get_domain_state("a.com")
        assert state.status == "failed"
        assert state.failed_phase == "storage"
        assert state.errors[-1]["error"] == "no quota"
        assert state_manager.get_audit_log(event="DOMAIN_FAILED", domain="a.com")

    @pytest.mark.asyncio
    async def test_terminal_domain_is_skipped(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        state_manager.update_domain_state("a.com", {"status": "succeeded"})
        log = []

        result = await coordinator.deploy_single_domain(
            "a.com", state_manager, recording_handlers(log)
        )

        assert result.skipped
        assert result.success
        assert log == []

    @pytest.mark.asyncio
    async def test_dry_run_invokes_no_handlers(self, coordinator_settings, state_manager):
        coordinator = DeploymentCoordinator(coordinator_settings, dry_run=True)
        state_manager.initialize_domain_states(["a.com"])
        log = []

        result = await coordinator.deploy_single_domain(
            "a.com", state_manager, recording_handlers(log)
        )

        assert result.success
        assert log == []

    @pytest.mark.asyncio
    async def test_skip_tests_skips_verification(self, coordinator_settings, state_manager):
        coordinator = DeploymentCoordinator(coordinator_settings, skip_tests=True)
        state_manager.initialize_domain_states(["a.com"])
        log = []

        await coordinator.deploy_single_domain("a.com", state_manager, recording_handlers(log))

        assert "verification" not in [phase for phase, _ in log]


class TestRepairAndRetry:
    """Test the single repair-and-retry for recoverable errors."""

    @pytest.mark.asyncio
    async def test_recoverable_error_retried_once(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        handlers = recording_handlers([])
        handlers.deployment = AsyncMock(
            side_effect=[
                DeploymentExecutionError(
                    "binding mismatch", "a.com", ErrorCategory.STORAGE_BINDING_MISMATCH
                ),
                {"url": "https://a.com"},
            ]
        )
        handlers.repair = AsyncMock()

        result = await coordinator.deploy_single_domain("a.com", state_manager, handlers)

        assert result.success
        assert handlers.deployment.await_count == 2
        handlers.repair.assert_awaited_once()
        assert handlers.repair.await_args.args[:2] == ("a.com", "deployment")
        assert len(state_manager.get_audit_log(event="REPAIR_ATTEMPTED")) == 1

    @pytest.mark.asyncio
    async def test_second_failure_is_final(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        handlers = recording_handlers([])
        handlers.storage = AsyncMock(
            side_effect=ProvisioningError("not found", "a.com", ErrorCategory.STORAGE_NOT_FOUND)
        )
        handlers.repair = AsyncMock()

        result = await coordinator.deploy_single_domain("a.com", state_manager, handlers)

        assert not result.success
        assert handlers.storage.await_count == 2
        assert handlers.repair.await_count == 1

    @pytest.mark.asyncio
    async def test_non_recoverable_error_not_retried(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        handlers = recording_handlers([])
        handlers.deployment = AsyncMock(
            side_effect=DeploymentExecutionError("bad token", "a.com", ErrorCategory.AUTHENTICATION)
        )
        handlers.repair = AsyncMock()

        result = await coordinator.deploy_single_domain("a.com", state_manager, handlers)

        assert not result.success
        assert handlers.deployment.await_count == 1
        handlers.repair.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_errors_not_retried(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        handlers = recording_handlers([])
        handlers.validation = AsyncMock(side_effect=ValidationError("bad domain", "a.com"))
        handlers.repair = AsyncMock()

        result = await coordinator.deploy_single_domain("a.com", state_manager, handlers)

        assert result.phase == "validation"
        handlers.repair.assert_not_awaited()


class TestPortfolio:
    """Test batched portfolio deployment."""

    @pytest.mark.asyncio
    async def test_three_domains_two_batches(self, coordinator, state_manager):
        domains = ["a.com", "b.com", "c.com"]
        state_manager.initialize_domain_states(domains)

        result = await coordinator.deploy_portfolio(
            domains, state_manager, recording_handlers([])
        )

        assert [b.domains for b in result.batches] == [["a.com", "b.com"], ["c.com"]]
        assert len(result.successful) == 3
        assert result.summary.total_batches == 2
        assert result.summary.success_rate == 100.0
        assert state_manager.portfolio_state.metrics.completed == 3

    @pytest.mark.asyncio
    async def test_partial_failure_isolation(self, coordinator, state_manager):
        domains = ["a.com", "b.com", "c.com", "d.com"]
        state_manager.initialize_domain_states(domains)
        handlers = recording_handlers([])

        async def deploy(domain, state):
            if domain == "b.com":
                raise DeploymentExecutionError("boom", domain)
            return {"url": f"https://{domain}"}

        handlers.deployment = deploy

        result = await coordinator.deploy_portfolio(domains, state_manager, handlers)

        assert [r.domain for r in result.failed] == ["b.com"]
        assert sorted(r.domain for r in result.successful) == ["a.com", "c.com", "d.com"]
        assert state_manager.get_domain_state("b.com").status == "failed"

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependent(self, coordinator, state_manager):
        domains = ["a.com", "b.com", "c.com"]
        state_manager.initialize_domain_states(domains)
        handlers = recording_handlers([])
        async def validate(domain, state):
            if domain == "a.com":
                raise ValidationError("invalid", domain)

        handlers.validation = validate

        result = await coordinator.deploy_portfolio(
            domains,
            state_manager,
            handlers,
            dependencies={"c.com": ["a.com"]},
            batches=[["a.com", "b.com"], ["c.com"]],
        )

        skipped = [r for r in result.failed if r.skipped]
        assert [r.domain for r in skipped] == ["c.com"]
        assert skipped[0].error_type == "DependencyFailed"
        assert state_manager.get_domain_state("c.com").failed_phase == "dependency"
        assert [r.domain for r in result.successful] == ["b.com"]

    @pytest.mark.asyncio
    async def test_pause_between_batches(self, coordinator_settings, state_manager):
        coordinator_settings.batch_pause_seconds = 2.0
        coordinator = DeploymentCoordinator(coordinator_settings)
        domains = ["a.com", "b.com", "c.com"]
        state_manager.initialize_domain_states(domains)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await coordinator.deploy_portfolio(domains, state_manager, recording_handlers([]))

        mock_sleep.assert_awaited_once_with(2.0)


class TestHealthVerification:
    """Test health verification with retries."""

    @pytest.mark.asyncio
    async def test_healthy_first_attempt(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        checker = Mock()
        checker.check_health = AsyncMock(
            return_value=HealthResult(url="https://a.com", status="healthy", status_code=200)
        )

        result = await coordinator.verify_health("a.com", "https://a.com", checker, state_manager)

        assert result.passed
        assert result.attempts == 1
        assert state_manager.get_audit_log(event="HEALTH_CHECK_PASSED")

    @pytest.mark.asyncio
    async def test_recovers_after_unhealthy(self, coordinator):
        checker = Mock()
        checker.check_health = AsyncMock(
            side_effect=[
                HealthResult(url="u", status="error", details={"error": "refused"}),
                HealthResult(url="u", status="healthy", status_code=200),
            ]
        )

        result = await coordinator.verify_health("a.com", "u", checker)

        assert result.passed
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_is_warning(self, coordinator, state_manager):
        state_manager.initialize_domain_states(["a.com"])
        checker = Mock()
        checker.check_health = AsyncMock(
            return_value=HealthResult(url="u", status="unhealthy", status_code=503)
        )

        result = await coordinator.verify_health("a.com", "u", checker, state_manager)

        assert not result.passed
        assert result.attempts == 3
        assert checker.check_health.await_count == 3
        assert "did not pass after 3 attempts" in result.warning
        assert state_manager.get_domain_state("a.com").warnings == [result.warning]
        assert len(state_manager.get_audit_log(event="HEALTH_CHECK_WARNING")) == 3
        assert len(state_manager.get_audit_log(event="HEALTH_CHECK_FAILED")) == 1


class TestHelpers:
    """Test helper functions and configuration checks."""

    @pytest.mark.asyncio
    async def test_call_with_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(DeploymentExecutionError) as exc_info:
            await call_with_timeout(slow(), 0.01, "a.com", "deploy")

        assert exc_info.value.category == ErrorCategory.TIMEOUT
        assert exc_info.value.domain == "a.com"

    def test_validate_configuration(self, coordinator_settings):
        coordinator_settings.parallel_deployments = 8
        result = DeploymentCoordinator(coordinator_settings).validate_configuration()
        assert result["valid"]
        assert result["warnings"] == ["High parallelism may cause rate limiting"]

        coordinator_settings.parallel_deployments = 12
        result = DeploymentCoordinator(coordinator_settings).validate_configuration()
        assert not result["valid"]
