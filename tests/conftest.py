"""
Pytest configuration and fixtures for portfolio orchestrator tests.
"""

import os
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import pytest

from portfolio_orchestrator.adapters import YamlManifestStore
from portfolio_orchestrator.config.settings import PortfolioSettings
from portfolio_orchestrator.models import DomainConfig, HealthResult
from portfolio_orchestrator.orchestrator import MultiDomainOrchestrator


def pytest_configure(config):
    """
    Keep platform credentials from the developer's shell out of the tests.
    This runs very early in the pytest lifecycle.
    """
    for name in (
        "PLATFORM_API_TOKEN",
        "PLATFORM_ACCOUNT_ID",
        "CLOUDFLARE_API_TOKEN",
        "CLOUDFLARE_ACCOUNT_ID",
    ):
        os.environ.pop(name, None)


@pytest.fixture
def temp_dirs(tmp_path):
    """Create temporary directories for testing."""
    dirs = {
        "state": tmp_path / "state",
        "service": tmp_path / "service",
        "config": tmp_path / "config",
    }
    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)
    return dirs


@pytest.fixture
def settings(temp_dirs):
    """Settings with no pauses and a single health probe interval of zero."""
    return PortfolioSettings(
        environment="production",
        state_dir=str(temp_dirs["state"]),
        coordinator={
            "parallel_deployments": 2,
            "batch_pause_seconds": 0,
            "health_check_retries": 3,
            "health_check_interval_seconds": 0,
            "phase_timeout_seconds": 5,
        },
        coordination={"max_concurrent_deployments": 2},
        platform={
            "api_token": "test-token",
            "account_id": "test-account",
            "zone_name": "example.com",
            "service_path": str(temp_dirs["service"]),
        },
    )


def make_health(url: str, status: str = "healthy") -> HealthResult:
    return HealthResult(url=url, status=status, status_code=200 if status == "healthy" else 503)


@pytest.fixture
def executor():
    """Deployment executor that records call order."""
    mock = Mock()
    mock.calls = []

    async def deploy(domain: str, config: DomainConfig) -> Dict[str, Any]:
        mock.calls.append(domain)
        return {"url": config.custom_url, "worker_url": f"https://{config.worker_name}.workers.dev"}

    mock.deploy = AsyncMock(side_effect=deploy)
    mock.rollback = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def provisioner():
    """Resource provisioner where no database exists yet."""
    mock = Mock()
    mock.exists = AsyncMock(return_value=False)
    mock.get_id = AsyncMock(side_effect=lambda name: f"id-{name}")
    mock.create = AsyncMock(side_effect=lambda name: f"id-{name}")
    mock.delete = AsyncMock(return_value=None)
    mock.apply_migrations = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def secret_distributor():
    mock = Mock()
    mock.generate_secrets = AsyncMock(
        return_value={
            "secrets": {"API_KEY": "s3cr3t-api", "JWT_SECRET": "s3cr3t-jwt"},
            "distribution_files": [],
        }
    )
    return mock


@pytest.fixture
def health_checker():
    """Health checker reporting every service healthy."""
    mock = Mock()
    mock.check_health = AsyncMock(side_effect=lambda url: make_health(url))
    return mock


@pytest.fixture
def manifest(temp_dirs):
    return YamlManifestStore(temp_dirs["service"] / "wrangler.yaml")


@pytest.fixture
def orchestrator(settings, executor, provisioner, secret_distributor, health_checker, manifest):
    """Orchestrator wired to test doubles."""
    return MultiDomainOrchestrator(
        settings,
        executor=executor,
        provisioner=provisioner,
        secret_distributor=secret_distributor,
        health_checker=health_checker,
        config_store=manifest,
    )
