"""
Tests for cross-domain coordination.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from portfolio_orchestrator.adapters import YamlPortfolioSource
from portfolio_orchestrator.cross_domain import CrossDomainCoordinator
from portfolio_orchestrator.exceptions import (
    CompatibilityError,
    DependencyCycleError,
    DeploymentExecutionError,
)
from portfolio_orchestrator.models import DomainDescriptor, HealthResult


@pytest.fixture
def coordinator(settings, orchestrator):
    """Coordinator sharing the test orchestrator, with no discovery sources."""
    return CrossDomainCoordinator(settings, orchestrator=orchestrator, sources=[])


def source(name, descriptors=None, error=None):
    mock = Mock()
    mock.name = name
    mock.discover = AsyncMock(return_value=descriptors or [], side_effect=error)
    return mock


class TestDiscovery:
    """Test portfolio discovery and the registry."""

    @pytest.mark.asyncio
    async def test_explicit_list_and_sources(self, coordinator):
        live = source(
            "live",
            [
                DomainDescriptor(name="alpha.com", source="live", version="9.9"),
                DomainDescriptor(name="delta.com", source="live"),
            ],
        )
        broken = source("broken", error=RuntimeError("api down"))

        result = await coordinator.discover_portfolio(
            ["alpha.com", {"name": "beta.com", "depends_on": ["alpha.com"]}],
            sources=[broken, live],
        )

        assert [d.name for d in result.domains] == ["alpha.com", "beta.com", "delta.com"]
        assert coordinator.registry["alpha.com"].source == "provided"
        assert coordinator.registry["alpha.com"].version is None
        assert [(e.source, e.error) for e in result.errors] == [("broken", "api down")]
        assert result.dependencies == {"beta.com": ["alpha.com"]}
        assert coordinator.state_manager.get_audit_log(event="PORTFOLIO_DISCOVERY_COMPLETED")

    @pytest.mark.asyncio
    async def test_bad_entry_recorded(self, coordinator):
        result = await coordinator.discover_portfolio(["alpha.com", {"depends_on": []}, 42])

        assert result.total_domains == 1
        assert len(result.errors) == 2
        assert all(e.source == "provided" for e in result.errors)

    @pytest.mark.asyncio
    async def test_discovered_names_take_run_environment(self, settings, orchestrator):
        settings.environment = "staging"
        coordinator = CrossDomainCoordinator(settings, orchestrator=orchestrator, sources=[])

        await coordinator.discover_portfolio(["alpha.com"])

        assert coordinator.registry["alpha.com"].environment == "staging"

    def test_register_existing_merges_metadata(self, coordinator):
        coordinator.register_domain(DomainDescriptor(name="alpha.com", metadata={"team": "a"}))
        merged = coordinator.register_domain(
            DomainDescriptor(name="alpha.com", version="2.0", metadata={"tier": "gold"})
        )

        assert merged.metadata == {"team": "a", "tier": "gold"}
        assert merged.version is None

    @pytest.mark.asyncio
    async def test_portfolio_file_round_trip(self, coordinator, tmp_path):
        await coordinator.discover_portfolio(
            [
                "alpha.com",
                {
                    "name": "beta.com",
                    "depends_on": ["alpha.com"],
                    "shared_resources": [{"name": "acme-db"}],
                },
            ]
        )
        path = coordinator.save_portfolio_file(str(tmp_path / "portfolio.yml"))

        descriptors = await YamlPortfolioSource(path).discover()

        beta = descriptors[1]
        assert beta.name == "beta.com"
        assert beta.depends_on == ["alpha.com"]
        assert beta.shared_resource_refs[0].name == "acme-db"
        assert beta.source == "configuration"

    def test_save_without_path(self, coordinator):
        with pytest.raises(ValueError):
            coordinator.save_portfolio_file()


class TestDependencyGraph:
    """Test dependency derivation, ordering and batching."""

    @pytest.mark.asyncio
    async def test_shared_resource_orders_members(self, coordinator):
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "shared_resources": [{"name": "acme-db"}]},
                "beta.com",
                {"name": "gamma.com", "shared_resources": [{"name": "acme-db"}]},
            ]
        )

        assert coordinator.dependencies == {"gamma.com": ["alpha.com"]}
        resource = coordinator.shared_resources["production/database:acme-db"]
        assert resource.domains == ["alpha.com", "gamma.com"]

    def test_order_puts_dependencies_first(self, coordinator):
        coordinator.dependencies = {"x.com": ["y.com"], "y.com": ["z.com"]}

        assert coordinator.resolve_dependency_order(["x.com", "y.com", "z.com"]) == [
            "z.com",
            "y.com",
            "x.com",
        ]

    def test_out_of_scope_dependencies_ignored(self, coordinator):
        coordinator.dependencies = {"x.com": ["elsewhere.com"]}
        assert coordinator.resolve_dependency_order(["x.com"]) == ["x.com"]

    @pytest.mark.parametrize(
        "dependencies,scope",
        [
            # chain
            ({"c.com": ["b.com"], "b.com": ["a.com"]}, ["c.com", "b.com", "a.com"]),
            # diamond
            (
                {"d.com": ["b.com", "c.com"], "b.com": ["a.com"], "c.com": ["a.com"]},
                ["d.com", "c.com", "b.com", "a.com"],
            ),
            # edges leaving the scope
            (
                {"b.com": ["a.com", "x.com"], "c.com": ["y.com"], "y.com": ["b.com"]},
                ["c.com", "b.com", "a.com"],
            ),
            # disconnected components
            ({"b.com": ["a.com"], "d.com": ["c.com"]}, ["d.com", "b.com", "c.com", "a.com"]),
            # fan-in
            (
                {"e.com": ["a.com", "b.com", "c.com"], "c.com": ["a.com"]},
                ["e.com", "c.com", "b.com", "a.com"],
            ),
        ],
    )
    def test_order_and_batches_respect_every_edge(self, coordinator, dependencies, scope):
        coordinator.dependencies = dependencies

        order = coordinator.resolve_dependency_order(scope)
        batches = coordinator.create_deployment_batches(order)

        assert sorted(order) == sorted(scope)
        assert [d for batch in batches for d in batch] == order
        batch_of = {d: i for i, batch in enumerate(batches) for d in batch}
        for domain in scope:
            for dep in dependencies.get(domain, []):
                if dep in scope:
                    assert order.index(dep) < order.index(domain)
                    assert batch_of[dep] < batch_of[domain]
        assert all(len(batch) <= 2 for batch in batches)

    def test_cycle_detected(self, coordinator):
        coordinator.dependencies = {"a.com": ["b.com"], "b.com": ["a.com"]}

        with pytest.raises(DependencyCycleError) as exc_info:
            coordinator.resolve_dependency_order(["a.com", "b.com"])

        assert exc_info.value.cycle == ["a.com", "b.com", "a.com"]

    def test_batches_split_on_dependency(self, coordinator):
        coordinator.dependencies = {"c.com": ["a.com"]}

        batches = coordinator.create_deployment_batches(["a.com", "c.com", "d.com", "e.com"])

        assert batches == [["a.com"], ["c.com", "d.com"], ["e.com"]]


class TestCoordinatedDeployment:
    """End-to-end coordinated deployments against test doubles."""

    @pytest.mark.asyncio
    async def test_dependency_deployed_first(self, coordinator, executor):
        await coordinator.discover_portfolio(
            [{"name": "x.com", "depends_on": ["y.com"]}, "y.com"]
        )

        coordination = await coordinator.coordinate_multi_domain_deployment(["x.com", "y.com"])

        assert executor.calls == ["y.com", "x.com"]
        assert coordination.status == "success"
        assert coordination.deployment_order == ["y.com", "x.com"]
        assert coordination.batches == [["y.com"], ["x.com"]]
        assert coordination.completed_phases == [
            "validation",
            "preparation",
            "deployment",
            "verification",
        ]
        assert coordination.metrics.completed == 2

    @pytest.mark.asyncio
    async def test_cycle_aborts_before_side_effects(self, coordinator, executor, provisioner):
        await coordinator.discover_portfolio(
            [
                {"name": "a.com", "depends_on": ["b.com"]},
                {"name": "b.com", "depends_on": ["a.com"]},
            ]
        )

        with pytest.raises(DependencyCycleError):
            await coordinator.coordinate_multi_domain_deployment()

        executor.deploy.assert_not_awaited()
        provisioner.create.assert_not_awaited()
        states = coordinator.state_manager.portfolio_state.domain_states.values()
        assert all(state.status == "pending" for state in states)
        assert coordinator.coordinations[-1].status == "failed"
        assert coordinator.state_manager.get_audit_log(event="MULTI_DOMAIN_DEPLOYMENT_FAILED")

    @pytest.mark.asyncio
    async def test_unknown_domains_are_registered(self, coordinator):
        coordination = await coordinator.coordinate_multi_domain_deployment(["Alpha.com "])

        assert coordination.domains == ["alpha.com"]
        assert coordinator.registry["alpha.com"].source == "coordination"
        assert coordination.status == "success"

    @pytest.mark.asyncio
    async def test_shared_database_provisioned_once(self, coordinator, provisioner):
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "shared_resources": [{"name": "acme-db"}]},
                {"name": "beta.com", "shared_resources": [{"name": "acme-db"}]},
            ]
        )

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "success"
        provisioner.create.assert_awaited_once_with("acme-db")
        for domain in ("alpha.com", "beta.com"):
            state = coordinator.state_manager.get_domain_state(domain)
            assert state.provisioned_resources["DB"] == {
                "name": "acme-db",
                "id": "id-acme-db",
                "shared": True,
            }
        created = [
            a for a in coordinator.orchestrator.get_rollback_plan() if a.type == "storage_created"
        ]
        assert [a.domain for a in created] == ["alpha.com"]
        assert coordinator.state_manager.get_audit_log(event="SHARED_RESOURCE_PROVISIONED")

    @pytest.mark.asyncio
    async def test_shared_database_under_own_binding(self, coordinator, manifest):
        shared = {"name": "acme-db", "binding": "SHARED_DB"}
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "shared_resources": [shared]},
                {"name": "beta.com", "shared_resources": [shared]},
            ]
        )

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "success"
        for clean in ("alpha-com", "beta-com"):
            key = f"domains.{clean}.production.databases"
            assert manifest.get(f"{key}.SHARED_DB") == {
                "database_name": "acme-db",
                "database_id": "id-acme-db",
            }
            assert manifest.get(f"{key}.DB") == {
                "database_name": f"{clean}-production-db",
                "database_id": f"id-{clean}-production-db",
            }

    @pytest.mark.asyncio
    async def test_domains_registered_after_discovery_are_ordered(self, coordinator, executor):
        await coordinator.discover_portfolio(
            [
                {"name": "a.com", "shared_resources": [{"name": "acme-db"}]},
                {"name": "b.com", "shared_resources": [{"name": "acme-db"}]},
            ]
        )
        coordinator.register_domain(DomainDescriptor(name="c.com", depends_on=["d.com"]))
        coordinator.register_domain(DomainDescriptor(name="d.com"))

        coordination = await coordinator.coordinate_multi_domain_deployment(["c.com", "d.com"])

        assert coordination.deployment_order == ["d.com", "c.com"]
        assert coordination.batches == [["d.com"], ["c.com"]]
        assert executor.calls == ["d.com", "c.com"]
        assert coordinator.dependencies["c.com"] == ["d.com"]

    @pytest.mark.asyncio
    async def test_each_coordination_is_a_new_run(self, coordinator, executor):
        failures = {"alpha.com": 1}

        async def deploy(domain, config):
            if failures.get(domain):
                failures[domain] -= 1
                raise DeploymentExecutionError("upload failed", domain)
            return {"url": config.custom_url}

        executor.deploy.side_effect = deploy
        await coordinator.discover_portfolio(["alpha.com"])

        first = await coordinator.coordinate_multi_domain_deployment()
        first_run = coordinator.orchestrator.orchestration_id
        second = await coordinator.coordinate_multi_domain_deployment()

        assert first.status == "failed"
        assert second.status == "success"
        assert second.results.successful_domains() == ["alpha.com"]
        assert coordinator.orchestrator.orchestration_id != first_run
        assert coordinator.state_manager is coordinator.orchestrator.state_manager
        assert coordinator.state_manager.get_domain_state("alpha.com").status == "succeeded"

    @pytest.mark.asyncio
    async def test_shared_secret_prepared_once(self, coordinator, secret_distributor):
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "shared_resources": [{"name": "acme-key", "kind": "secret"}]},
                {"name": "beta.com", "shared_resources": [{"name": "acme-key", "kind": "secret"}]},
            ]
        )

        await coordinator.coordinate_multi_domain_deployment()

        shared_calls = [
            c for c in secret_distributor.generate_secrets.await_args_list if c.args[2].get("shared")
        ]
        assert len(shared_calls) == 1
        for domain in ("alpha.com", "beta.com"):
            state = coordinator.state_manager.get_domain_state(domain)
            assert state.metadata["shared_secrets"] == ["acme-key"]

    @pytest.mark.asyncio
    async def test_invalid_domain_fails_its_dependents(self, coordinator, executor):
        await coordinator.discover_portfolio(
            ["not_a_domain", {"name": "x.com", "depends_on": ["not_a_domain"]}, "z.com"]
        )

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "partial"
        failed = {f.domain: f for f in coordination.results.failed}
        assert failed["not_a_domain"].error_type == "ValidationError"
        assert failed["x.com"].error_type == "DependencyFailed"
        assert coordination.results.successful_domains() == ["z.com"]
        assert executor.calls == ["z.com"]

    @pytest.mark.asyncio
    async def test_low_success_rate_rolls_back(self, coordinator, executor):
        async def deploy(domain, config):
            if domain == "beta.com":
                raise DeploymentExecutionError("upload failed", domain)
            return {"url": config.custom_url}

        executor.deploy.side_effect = deploy
        await coordinator.discover_portfolio(["alpha.com", "beta.com"])

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "failed"
        assert "rollback threshold" in coordination.error
        assert "verification" not in coordination.completed_phases
        assert [r.domain for r in coordination.results.rolled_back] == ["alpha.com"]
        executor.rollback.assert_awaited_once()
        assert coordinator.state_manager.get_domain_state("alpha.com").status == "rolled-back"
        assert coordinator.state_manager.get_audit_log(event="CROSS_DOMAIN_ROLLBACK_COMPLETED")

    @pytest.mark.asyncio
    async def test_no_rollback_when_disabled(self, coordinator, executor):
        coordinator.config.enable_auto_rollback = False
        executor.deploy.side_effect = DeploymentExecutionError("upload failed")
        await coordinator.discover_portfolio(["alpha.com"])

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "failed"
        assert coordination.results.rolled_back == []
        executor.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollback_continues_past_failures(self, coordinator, orchestrator):
        await coordinator.discover_portfolio(["alpha.com", "beta.com"])
        coordination = await coordinator.coordinate_multi_domain_deployment()
        calls = []

        async def rollback_domain(domain, reason, deployment_id=None, coordination_id=None):
            calls.append(domain)
            if domain == "beta.com":
                raise RuntimeError("cannot revert")

        coordinator.rollback_executor = Mock(rollback_domain=rollback_domain)

        rolled_back = await coordinator.coordinate_rollback(coordination)

        assert calls == ["beta.com", "alpha.com"]
        assert [r.domain for r in rolled_back] == ["alpha.com"]

    @pytest.mark.asyncio
    async def test_unexpected_error_rolls_back_and_raises(self, coordinator, orchestrator):
        await coordinator.discover_portfolio(["alpha.com"])

        with patch.object(
            orchestrator, "deploy_portfolio", AsyncMock(side_effect=RuntimeError("crash"))
        ):
            with pytest.raises(RuntimeError):
                await coordinator.coordinate_multi_domain_deployment()

        assert coordinator.coordinations[-1].status == "failed"
        assert coordinator.state_manager.get_audit_log(event="CROSS_DOMAIN_ROLLBACK_START")


class TestCompatibility:
    """Test cross-domain compatibility validation."""

    @pytest.mark.asyncio
    async def test_environment_mismatch(self, coordinator, executor):
        coordinator.register_domain(DomainDescriptor(name="alpha.com", environment="staging"))
        coordinator.register_domain(DomainDescriptor(name="beta.com"))

        with pytest.raises(CompatibilityError) as exc_info:
            await coordinator.coordinate_multi_domain_deployment()

        assert exc_info.value.issues == ["alpha.com: environment mismatch"]
        executor.deploy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conflicting_shared_resource(self, coordinator):
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "shared_resources": [{"name": "acme", "binding": "DB"}]},
                {"name": "beta.com", "shared_resources": [{"name": "acme", "kind": "secret"}]},
            ]
        )

        with pytest.raises(CompatibilityError):
            await coordinator.coordinate_multi_domain_deployment()

    @pytest.mark.asyncio
    async def test_cors_and_versions_are_warnings(self, coordinator):
        await coordinator.discover_portfolio(
            [
                {"name": "alpha.com", "cors_origins": ["https://other.com"], "version": "1.0"},
                {"name": "beta.com", "version": "1.1"},
            ]
        )

        coordination = await coordinator.coordinate_multi_domain_deployment()

        assert coordination.status == "success"
        assert any("Mixed artifact versions" in w for w in coordination.warnings)
        assert any("does not allow CORS from beta.com" in w for w in coordination.warnings)

    @pytest.mark.parametrize(
        "origins,allowed",
        [
            (["*"], True),
            (["https://data-service.beta.com"], True),
            (["https://beta.com/"], True),
            (["https://*.beta.com"], True),
            (["https://other.com"], False),
            ([], False),
        ],
    )
    def test_origin_matching(self, origins, allowed):
        assert (
            CrossDomainCoordinator._origin_allowed(
                origins, "beta.com", "https://data-service.beta.com"
            )
            is allowed
        )


class TestMonitoring:
    """Test portfolio health monitoring and statistics."""

    @pytest.mark.asyncio
    async def test_monitor_portfolio_health(self, coordinator, health_checker):
        def check(url):
            if "beta.com" in url:
                return HealthResult(url=url, status="error", details={"error": "refused"})
            return HealthResult(url=url, status="healthy", status_code=200)

        health_checker.check_health.side_effect = check
        await coordinator.discover_portfolio(
            ["alpha.com", "beta.com", {"name": "gamma.com", "service_config": {"url": "https://g"}}]
        )

        report = await coordinator.monitor_portfolio_health()

        assert report.total == 3
        assert report.healthy == 2
        assert report.errors == 1
        assert report.checks["alpha.com"].url == "https://data-service.alpha.com"
        assert report.checks["gamma.com"].url == "https://g"

    @pytest.mark.asyncio
    async def test_statistics(self, coordinator):
        await coordinator.discover_portfolio(["alpha.com", "beta.com"])
        await coordinator.coordinate_multi_domain_deployment()
        await coordinator.monitor_portfolio_health()

        stats = coordinator.get_portfolio_statistics()

        assert stats["portfolio"]["total_domains"] == 2
        assert stats["deployments"]["coordinations"] == 1
        assert stats["deployments"]["completed"] == 2
        assert stats["health"]["healthy"] == 2
