"""
Domain resolution.

Turns a domain name into a concrete, environment-specific deployment
configuration and checks the prerequisites for deploying it. The resolver
knows nothing about other domains in the portfolio.
"""

import asyncio
import logging
import os
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from portfolio_orchestrator.config.settings import PlatformSettings, ResolverSettings
from portfolio_orchestrator.models import (
    DomainConfig,
    DomainResolution,
    ValidationResult,
    normalize_domain_name,
)
from portfolio_orchestrator.utils.log_sanitizer import sanitize_domain

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

# Async lookup returning overrides for (domain, environment), e.g. from a discovery source
OverrideLookup = Callable[[str, str], Awaitable[Dict[str, Any]]]

_LOCAL_MARKERS = ("localhost", "127.0.0.1")


def clean_domain_name(domain: str) -> str:
    """Domain name usable inside platform resource identifiers."""
    return re.sub(r"[^a-zA-Z0-9-]", "", domain.replace(".", "-"))


class DomainResolver:
    """
    Resolves domains to deployment configurations.

    Results are cached per (domain, environment) when caching is enabled.
    """

    def __init__(
        self,
        settings: Optional[ResolverSettings] = None,
        platform: Optional[PlatformSettings] = None,
        environment: str = "production",
        service_name: str = "data-service",
        lookup: Optional[OverrideLookup] = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            settings: Resolver settings
            platform: Platform settings, used to check credentials
            environment: Default environment when none is given per call
            service_name: Base service name used in worker names and hostnames
            lookup: Optional async lookup whose overrides are merged into configs
        """
        self.settings = settings or ResolverSettings()
        self.platform = platform
        self.environment = environment
        self.service_name = service_name
        self.lookup = lookup
        self._cache: Dict[Tuple[str, str], DomainConfig] = {}
        self._hits = 0
        self._misses = 0

    def is_valid_domain_format(self, domain: str) -> bool:
        return bool(DOMAIN_PATTERN.match(domain or ""))

    def _build_config(self, domain: str, environment: str) -> DomainConfig:
        clean = clean_domain_name(domain)
        hostnames = {
            env: template.format(service=self.service_name, domain=domain)
            for env, template in self.settings.domain_templates.items()
        }
        hostname = hostnames.get(environment) or f"{self.service_name}.{domain}"
        database_name = f"{clean}-{environment}-db"

        return DomainConfig(
            name=domain,
            clean_name=clean,
            environment=environment,
            service_name=self.service_name,
            worker_name=f"{clean}-{self.service_name}",
            database_name=database_name,
            hostnames=hostnames,
            custom_url=f"https://{hostname}",
            bindings={self.settings.database_binding: database_name},
        )

    async def resolve_domain(
        self, name: str, environment: Optional[str] = None, force_refresh: bool = False
    ) -> DomainConfig:
        """
        Resolve a domain to its deployment configuration.

        Args:
            name: Domain name
            environment: Target environment (defaults to the resolver's environment)
            force_refresh: Bypass and replace any cached entry

        Returns:
            Resolved configuration
        """
        domain = normalize_domain_name(name)
        env = environment or self.environment
        key = (domain, env)

        if self.settings.cache_enabled and not force_refresh and key in self._cache:
            self._hits += 1
            return self._cache[key]

        self._misses += 1
        config = self._build_config(domain, env)

        if self.lookup is not None:
            overrides = await self.lookup(domain, env) or {}
            if overrides:
                fields = {k: v for k, v in overrides.items() if k in DomainConfig.model_fields}
                config = config.model_copy(update={**fields, "overrides": dict(overrides)})
                logger.debug(
                    f"Merged {len(overrides)} overrides into config for {sanitize_domain(domain)}"
                )

        if self.settings.cache_enabled:
            self._cache[key] = config

        return config

    async def validate_prerequisites(self, domain: str) -> ValidationResult:
        """
        Check that a domain can be deployed, before any side effect.

        Never raises; unexpected errors are reported as issues.

        Args:
            domain: Domain name

        Returns:
            Validation result with blocking issues and non-blocking warnings
        """
        result = ValidationResult(domain=domain)

        try:
            api_token = self.platform.api_token if self.platform else None
            account_id = self.platform.account_id if self.platform else None
            if not (api_token or os.getenv("CLOUDFLARE_API_TOKEN")):
                result.warnings.append(
                    "Platform API token not configured (will be required during deployment)"
                )
            if not (account_id or os.getenv("CLOUDFLARE_ACCOUNT_ID")):
                result.warnings.append(
                    "Platform account ID not configured (will be required during deployment)"
                )

            if not self.is_valid_domain_format(domain):
                result.valid = False
                result.issues.append(f"Invalid domain format: {domain}")

            if self.settings.validation_level == "comprehensive":
                if any(marker in domain for marker in _LOCAL_MARKERS):
                    result.warnings.append(
                        "Using local domain - may not be accessible externally"
                    )
        except Exception as e:
            result.valid = False
            result.issues.append(f"Validation error: {e}")

        if result.issues:
            logger.warning(
                f"Prerequisite validation failed for {sanitize_domain(domain)}: {result.issues}"
            )
        return result

    async def resolve_multiple(self, domains: List[str]) -> Dict[str, DomainResolution]:
        """
        Resolve and validate several domains concurrently.

        One domain's failure never blocks the others; it is reported in that
        domain's entry.

        Args:
            domains: Domain names

        Returns:
            Mapping of domain to its resolution
        """

        async def _resolve_one(domain: str) -> DomainResolution:
            config = await self.resolve_domain(domain)
            validation = await self.validate_prerequisites(domain)
            return DomainResolution(domain=domain, config=config, validation=validation)

        outcomes = await asyncio.gather(
            *[_resolve_one(domain) for domain in domains], return_exceptions=True
        )

        resolved: Dict[str, DomainResolution] = {}
        for domain, outcome in zip(domains, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to resolve {sanitize_domain(domain)}: {outcome}")
                resolved[domain] = DomainResolution(domain=domain, error=str(outcome))
            else:
                resolved[domain] = outcome
        return resolved

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._cache),
            "enabled": self.settings.cache_enabled,
            "hits": self._hits,
            "misses": self._misses,
        }
