"""
Domain-level data models.

Descriptors are what discovery produces; configs are what the resolver
produces for one (domain, environment) pair.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def normalize_domain_name(name: str) -> str:
    """Canonical form of a domain name, used for every registry and state key."""
    return str(name).strip().lower()


class SharedResourceRef(BaseModel):
    """
    Reference from a domain to an infrastructure object it may share.

    Two references with the same kind and name, in the same environment,
    denote the same shared resource.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Resource name on the platform")
    kind: Literal["database", "secret"] = Field(default="database", description="Resource kind")
    binding: str = Field(default="DB", description="Binding name in the deployment manifest")

    @property
    def key(self) -> str:
        """Identity of the resource independent of the referencing domain."""
        return f"{self.kind}:{self.name}"


class DomainDescriptor(BaseModel):
    """
    A deployment target as registered in the portfolio.

    Immutable once registered; use refresh_metadata() to obtain an updated copy.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Domain name (e.g. example.com)")
    environment: str = Field(default="production", description="Target environment")
    service_config: Dict[str, Any] = Field(
        default_factory=dict, description="Service-level settings for the deployed artifact"
    )
    shared_resource_refs: List[SharedResourceRef] = Field(
        default_factory=list, description="Infrastructure objects this domain references"
    )
    depends_on: List[str] = Field(
        default_factory=list, description="Domains that must be deployed before this one"
    )
    version: Optional[str] = Field(None, description="Artifact version declared for the domain")
    cors_origins: List[str] = Field(
        default_factory=list, description="Origins the deployed service accepts"
    )
    source: str = Field(default="provided", description="Discovery channel that produced it")
    discovered_at: str = Field(default_factory=utc_now, description="ISO 8601 discovery time")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        v = normalize_domain_name(v)
        if not v:
            raise ValueError("Domain name cannot be empty")
        return v

    def refresh_metadata(self, updates: Dict[str, Any]) -> "DomainDescriptor":
        """Return a copy with metadata merged with updates."""
        return self.model_copy(update={"metadata": {**self.metadata, **updates}})


class DomainConfig(BaseModel):
    """Concrete, environment-specific deployment configuration for one domain."""

    name: str = Field(..., description="Domain name")
    clean_name: str = Field(..., description="Domain name safe for resource identifiers")
    environment: str = Field(..., description="Environment this config was resolved for")
    service_name: str = Field(..., description="Base service name")
    worker_name: str = Field(..., description="Deployed worker/script name")
    database_name: str = Field(..., description="Domain-private database name")
    hostnames: Dict[str, str] = Field(
        default_factory=dict, description="Custom hostname per environment"
    )
    custom_url: str = Field(..., description="Public URL for this environment")
    bindings: Dict[str, str] = Field(
        default_factory=dict, description="Manifest binding name -> resource name"
    )
    generated_at: str = Field(default_factory=utc_now, description="ISO 8601 resolution time")
    overrides: Dict[str, Any] = Field(
        default_factory=dict, description="Values merged from discovery lookups"
    )


class ValidationResult(BaseModel):
    """Outcome of prerequisite validation for one domain."""

    domain: str
    valid: bool = True
    issues: List[str] = Field(default_factory=list, description="Blocking problems")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking problems")


class DomainResolution(BaseModel):
    """Per-domain entry returned by DomainResolver.resolve_multiple()."""

    domain: str
    config: Optional[DomainConfig] = None
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and self.validation is not None and self.validation.valid
