"""Configuration for the portfolio orchestrator."""

from portfolio_orchestrator.config.settings import (
    CoordinationSettings,
    CoordinatorSettings,
    PlatformSettings,
    PortfolioSettings,
    ResolverSettings,
)

__all__ = [
    "CoordinationSettings",
    "CoordinatorSettings",
    "PlatformSettings",
    "PortfolioSettings",
    "ResolverSettings",
]
