"""
Portfolio orchestrator CLI entry point.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from portfolio_orchestrator.config.settings import PortfolioSettings
from portfolio_orchestrator.cross_domain import CrossDomainCoordinator
from portfolio_orchestrator.logging_config import setup_logging as setup_full_logging
from portfolio_orchestrator.models import Coordination


def setup_logging(verbose: bool = False) -> None:
    """Setup console and rotating file logging."""
    console_level = "DEBUG" if verbose else "INFO"

    log_dir = "/var/log/portfolio-orchestrator"
    if not os.access("/var/log", os.W_OK):
        log_dir = str(Path.home() / ".local" / "log" / "portfolio-orchestrator")

    try:
        setup_full_logging(
            log_dir=log_dir,
            console_level=console_level,
            file_level="DEBUG",
            use_json=False,
        )
    except PermissionError:
        # Fall back to console logging if the log directory is not writable
        logging.basicConfig(
            level=getattr(logging, console_level),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )


def load_settings(args: argparse.Namespace) -> PortfolioSettings:
    """Load the configuration file and apply command line overrides."""
    settings = PortfolioSettings.from_file(args.config)

    updates = {}
    if getattr(args, "environment", None):
        updates["environment"] = args.environment
    if getattr(args, "dry_run", False):
        updates["dry_run"] = True
    if getattr(args, "skip_tests", False):
        updates["skip_tests"] = True
    if updates:
        settings = PortfolioSettings(**{**settings.model_dump(), **updates})
    return settings


async def run_plan(
    settings: PortfolioSettings, domains: List[str], save: Optional[str] = None
) -> int:
    """Discover the portfolio and print the deployment plan."""
    coordinator = CrossDomainCoordinator(settings)
    discovery = await coordinator.discover_portfolio(domains or settings.domains)

    for error in discovery.errors:
        print(f"  ! {error.source}: {error.error}")

    names = [d.name for d in discovery.domains]
    order = coordinator.resolve_dependency_order(names)
    batches = coordinator.create_deployment_batches(order)

    print(f"Portfolio {settings.coordination.portfolio_name} ({settings.environment})")
    print(f"Domains: {len(names)}")
    for index, batch in enumerate(batches, 1):
        print(f"  Batch {index}: {', '.join(batch)}")
    for domain, deps in coordinator.dependencies.items():
        print(f"  {domain} depends on {', '.join(deps)}")

    if save:
        coordinator.save_portfolio_file(save)
        print(f"Saved portfolio to: {save}")
    return 0


def print_coordination(coordination: Coordination) -> None:
    print(f"Coordination {coordination.coordination_id}: {coordination.status}")
    for result in coordination.results.successful:
        print(f"  ✓ {result.domain}: {result.url or 'deployed'} ({result.duration:.1f}s)")
    for failure in coordination.results.failed:
        print(f"  ✗ {failure.domain}: {failure.phase} - {failure.error}")
    for result in coordination.results.rolled_back:
        print(f"  ↺ {result.domain}: rolled back")
    for warning in coordination.warnings:
        print(f"  ! {warning}")


async def run_deploy(settings: PortfolioSettings, domains: List[str]) -> int:
    """Run a coordinated deployment and print per-domain results."""
    coordinator = CrossDomainCoordinator(settings)
    discovery = await coordinator.discover_portfolio(domains or settings.domains)
    if not discovery.domains:
        print("No domains to deploy")
        return 1

    coordination = await coordinator.coordinate_multi_domain_deployment(
        [d.name for d in discovery.domains]
    )
    await coordinator.orchestrator.complete()
    print_coordination(coordination)

    if coordination.results.failed or coordination.status == "failed":
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Portfolio orchestrator - coordinated multi-domain deployments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a default config
  portfolio-orchestrator --generate-config --config portfolio.yml

  # Show dependency order and batches
  portfolio-orchestrator --config portfolio.yml plan --domain example.com

  # Deploy to staging without side effects
  portfolio-orchestrator --config portfolio.yml deploy --environment staging --dry-run
        """,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="/etc/portfolio-orchestrator/config.yml",
        help="Path to configuration file",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate default configuration file and exit",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration file and exit"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("plan", "Discover the portfolio and print the deployment plan"),
        ("deploy", "Run a coordinated deployment"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--domain",
            "-d",
            action="append",
            default=[],
            dest="domains",
            help="Domain to include (repeatable; defaults to configured domains)",
        )
        sub.add_argument(
            "--environment",
            "-e",
            choices=["production", "staging", "development"],
            help="Target environment",
        )
        if name == "plan":
            sub.add_argument("--save", help="Write the discovered portfolio to this file")
        else:
            sub.add_argument("--dry-run", action="store_true", help="Log phases only")
            sub.add_argument(
                "--skip-tests", action="store_true", help="Skip post-deployment verification"
            )

    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.generate_config:
        PortfolioSettings().save(args.config)
        print(f"Generated default configuration at: {args.config}")
        return 0

    if args.validate_config:
        try:
            PortfolioSettings.from_file(args.config)
            print(f"Configuration valid: {args.config}")
            return 0
        except Exception as e:
            print(f"Configuration invalid: {e}")
            return 1

    if not args.command:
        parser.print_help()
        return 1

    if not Path(args.config).exists():
        print(f"Configuration file not found: {args.config}")
        print(f"Generate one with: portfolio-orchestrator --generate-config --config {args.config}")
        return 1

    try:
        logger.info(f"Loading configuration from {args.config}")
        settings = load_settings(args)

        if args.command == "plan":
            return asyncio.run(run_plan(settings, args.domains, args.save))
        return asyncio.run(run_deploy(settings, args.domains))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
