"""
Configuration settings for the portfolio orchestrator.

All defaults live here. Components receive the relevant section and never
merge option bags of their own.
"""

import os
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_DOMAIN_TEMPLATES: Dict[str, str] = {
    "production": "{service}.{domain}",
    "staging": "staging-{service}.{domain}",
    "development": "dev-{service}.{domain}",
}


class ResolverSettings(BaseModel):
    """Domain resolution configuration."""

    validation_level: Literal["basic", "comprehensive"] = Field(
        default="basic", description="Depth of prerequisite validation"
    )
    cache_enabled: bool = Field(default=True, description="Cache resolved domain configs")
    domain_templates: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_DOMAIN_TEMPLATES),
        description="Custom hostname template per environment ({service}, {domain})",
    )
    database_binding: str = Field(default="DB", description="Manifest binding name for storage")


class CoordinatorSettings(BaseModel):
    """Per-domain pipeline and batching configuration."""

    parallel_deployments: int = Field(default=3, description="Domains deployed concurrently")
    batch_pause_seconds: float = Field(default=2.0, description="Pause between batches")
    health_check_retries: int = Field(default=3, description="Health probes before warning")
    health_check_interval_seconds: float = Field(
        default=5.0, description="Fixed delay between health probes"
    )
    phase_timeout_seconds: float = Field(
        default=120.0, description="Ceiling for a single external call"
    )

    @field_validator("parallel_deployments")
    @classmethod
    def validate_parallelism(cls, v: int) -> int:
        if v < 1:
            raise ValueError("parallel_deployments must be at least 1")
        return v

    @field_validator("batch_pause_seconds", "health_check_interval_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Durations cannot be negative")
        return v


class CoordinationSettings(BaseModel):
    """Cross-domain coordination configuration."""

    portfolio_name: str = Field(default="portfolio", description="Portfolio display name")
    max_concurrent_deployments: int = Field(default=3, description="Batch size for waves")
    enable_dependency_resolution: bool = Field(default=True)
    enable_cross_validation: bool = Field(default=True)
    enable_shared_resources: bool = Field(default=True)
    enable_auto_rollback: bool = Field(default=True)
    rollback_threshold: float = Field(
        default=0.8, description="Minimum deployment success rate before rollback"
    )
    portfolio_file: Optional[str] = Field(
        default=None, description="Persisted portfolio descriptor file (YAML)"
    )

    @field_validator("rollback_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("rollback_threshold must be between 0 and 1")
        return v


class PlatformSettings(BaseModel):
    """Credentials and command for the external deployment platform."""

    api_token: Optional[str] = Field(default=None, description="Platform API token")
    account_id: Optional[str] = Field(default=None, description="Platform account ID")
    zone_name: Optional[str] = Field(default=None, description="DNS zone for custom domains")
    deploy_command: List[str] = Field(
        default_factory=lambda: ["npx", "wrangler", "deploy"],
        description="Publishing CLI invocation; '--env <environment>' is appended",
    )
    rollback_command: List[str] = Field(
        default_factory=lambda: ["npx", "wrangler", "rollback"],
        description="CLI invocation used to revert the last publish",
    )
    storage_command: List[str] = Field(
        default_factory=lambda: ["npx", "wrangler", "d1"],
        description="CLI invocation for database list/create/delete/migrations",
    )
    manifest_path: str = Field(default="wrangler.yaml", description="Deployment manifest")
    service_path: str = Field(default=".", description="Working directory for the CLI")

    @model_validator(mode="after")
    def apply_environment(self) -> "PlatformSettings":
        """Fill credentials from the environment when not configured."""
        if not self.api_token:
            self.api_token = os.getenv("PLATFORM_API_TOKEN") or os.getenv("CLOUDFLARE_API_TOKEN")
        if not self.account_id:
            self.account_id = os.getenv("PLATFORM_ACCOUNT_ID") or os.getenv(
                "CLOUDFLARE_ACCOUNT_ID"
            )
        return self


class PortfolioSettings(BaseModel):
    """Complete orchestrator configuration."""

    environment: Literal["production", "staging", "development"] = Field(default="production")
    dry_run: bool = Field(default=False, description="Log phases without side effects")
    skip_tests: bool = Field(default=False, description="Skip post-deployment verification")
    service_name: str = Field(default="data-service", description="Base service name")
    state_dir: str = Field(
        default="/var/lib/portfolio-orchestrator", description="Audit log and snapshot directory"
    )
    persistence_enabled: bool = Field(default=True)
    domains: List[str] = Field(default_factory=list, description="Explicit domain list")

    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    coordination: CoordinationSettings = Field(default_factory=CoordinationSettings)
    platform: PlatformSettings = Field(default_factory=PlatformSettings)

    @classmethod
    def from_file(cls, path: str) -> "PortfolioSettings":
        """
        Load settings from a YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Parsed settings
        """
        config_path = Path(path)
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def save(self, path: str) -> None:
        """
        Write settings to a YAML file.

        Credentials are not written.

        Args:
            path: Destination path
        """
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude={"platform": {"api_token"}})
        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
