"""
Domain discovery sources.

A persisted portfolio file lists domains either as bare names or as mappings:

    portfolio: acme
    domains:
      - example.com
      - name: api.example.com
        depends_on: [example.com]
        shared_resources:
          - name: acme-auth-db
            kind: database
        cors_origins: ["https://example.com"]
        version: "2.1.0"
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from portfolio_orchestrator.models import DomainDescriptor, SharedResourceRef

logger = logging.getLogger(__name__)

DomainEntry = Union[str, Dict[str, Any], DomainDescriptor]


def descriptor_from_entry(
    entry: DomainEntry, source: str, environment: Optional[str] = None
) -> DomainDescriptor:
    """
    Build a descriptor from a bare name, a mapping, or an existing descriptor.

    Args:
        entry: Domain entry
        source: Discovery channel recorded on the descriptor
        environment: Environment for entries that do not declare one

    Returns:
        Domain descriptor

    Raises:
        ValueError: The entry has no usable domain name
    """
    if isinstance(entry, DomainDescriptor):
        return entry
    if isinstance(entry, str):
        if environment:
            return DomainDescriptor(name=entry, source=source, environment=environment)
        return DomainDescriptor(name=entry, source=source)
    if not isinstance(entry, dict):
        raise ValueError(f"Unsupported domain entry: {entry!r}")

    data = dict(entry)
    name = data.pop("name", None) or data.pop("domain", None)
    if not name:
        raise ValueError("Domain entry is missing a name")

    refs = data.pop("shared_resources", None) or data.pop("shared_resource_refs", None) or []
    data["shared_resource_refs"] = [
        ref if isinstance(ref, SharedResourceRef) else SharedResourceRef(**ref) for ref in refs
    ]
    data.setdefault("source", source)
    if environment:
        data.setdefault("environment", environment)
    return DomainDescriptor(name=name, **data)


class YamlPortfolioSource:
    """Discovers domains from a persisted portfolio file."""

    def __init__(
        self,
        path: Union[str, Path],
        name: str = "configuration",
        environment: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        self.name = name
        self.environment = environment

    async def discover(self) -> List[DomainDescriptor]:
        if not self.path.exists():
            logger.debug(f"Portfolio file {self.path} not found, nothing to discover")
            return []

        with open(self.path, "r") as f:
            data = yaml.safe_load(f) or {}

        entries = data.get("domains", []) if isinstance(data, dict) else data
        descriptors = [
            descriptor_from_entry(entry, self.name, self.environment) for entry in entries or []
        ]
        logger.info(f"Discovered {len(descriptors)} domains from {self.path}")
        return descriptors


def save_portfolio(
    path: Union[str, Path], descriptors: Iterable[DomainDescriptor], portfolio_name: str
) -> None:
    """
    Persist a registry so it can be rediscovered by YamlPortfolioSource.

    Args:
        path: Destination file
        descriptors: Registered domains
        portfolio_name: Portfolio display name
    """
    entries = []
    for descriptor in descriptors:
        entry = descriptor.model_dump(
            exclude={"source", "discovered_at", "shared_resource_refs"}, exclude_defaults=True
        )
        entry["name"] = descriptor.name
        if descriptor.shared_resource_refs:
            entry["shared_resources"] = [ref.model_dump() for ref in descriptor.shared_resource_refs]
        entries.append(entry)

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        yaml.safe_dump(
            {"portfolio": portfolio_name, "domains": entries},
            f,
            default_flow_style=False,
            sort_keys=False,
        )
    logger.info(f"Saved portfolio with {len(entries)} domains to {target}")
