"""
Platform CLI adapters.

Runs the platform's publishing CLI as a subprocess for deploys, rollbacks and
database lifecycle. CLI failures are classified into an ErrorCategory once,
here at the boundary, so the orchestration core never inspects message text.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from portfolio_orchestrator.config.settings import PlatformSettings
from portfolio_orchestrator.exceptions import (
    DeploymentExecutionError,
    ErrorCategory,
    ProvisioningError,
)
from portfolio_orchestrator.models import DomainConfig

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https://[^\s]+")
DATABASE_ID_PATTERN = re.compile(r'database_id\s*=\s*"([^"]+)"')
MIGRATION_PATTERN = re.compile(r"\b\d{4}_[\w-]+\.sql\b")

# Checked in order; first match wins
_CATEGORY_PATTERNS: List[Tuple[ErrorCategory, re.Pattern]] = [
    (
        ErrorCategory.STORAGE_BINDING_MISMATCH,
        re.compile(r"binding.*(mismatch|does not match|invalid)|database_id.*(mismatch|invalid)", re.I),
    ),
    (
        ErrorCategory.STORAGE_NOT_FOUND,
        re.compile(r"database.*not found|no such database|couldn't find a d1 database", re.I),
    ),
    (
        ErrorCategory.AUTHENTICATION,
        re.compile(r"authentication|unauthori[sz]ed|invalid (api )?token", re.I),
    ),
    (ErrorCategory.PERMISSION, re.compile(r"permission|forbidden|\b403\b", re.I)),
    (ErrorCategory.TIMEOUT, re.compile(r"timed? ?out", re.I)),
]


def classify_error(output: str) -> ErrorCategory:
    """
    Map CLI error output to a typed category.

    Args:
        output: Combined stderr/stdout of the failed command

    Returns:
        Matching category, UNKNOWN when nothing matches
    """
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(output or ""):
            return category
    return ErrorCategory.UNKNOWN


class CommandRunner:
    """Runs platform CLI commands with credentials and a fixed timeout."""

    def __init__(self, platform: PlatformSettings, timeout: float = 120.0) -> None:
        self.platform = platform
        self.timeout = timeout

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.platform.api_token:
            env["CLOUDFLARE_API_TOKEN"] = self.platform.api_token
        if self.platform.account_id:
            env["CLOUDFLARE_ACCOUNT_ID"] = self.platform.account_id
        return env

    async def run(self, cmd: List[str]) -> Tuple[int, str, str]:
        """
        Run a command to completion.

        Args:
            cmd: Command and arguments

        Returns:
            Tuple of (return code, stdout, stderr)

        Raises:
            asyncio.TimeoutError: The command exceeded the timeout and was killed
        """
        logger.debug(f"Executing: {' '.join(cmd)} (cwd={self.platform.service_path})")
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.platform.service_path,
            env=self._environment(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return process.returncode or 0, stdout.decode(errors="replace"), stderr.decode(
            errors="replace"
        )


class CommandDeploymentExecutor:
    """Publishes a domain's artifact by running the platform deploy command."""

    def __init__(
        self,
        platform: PlatformSettings,
        environment: str = "production",
        timeout: float = 120.0,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.platform = platform
        self.environment = environment
        self.runner = runner or CommandRunner(platform, timeout)

    async def _run_or_raise(self, cmd: List[str], domain: str, operation: str) -> str:
        try:
            returncode, stdout, stderr = await self.runner.run(cmd)
        except asyncio.TimeoutError:
            raise DeploymentExecutionError(
                f"{operation} timed out after {self.runner.timeout}s",
                domain,
                category=ErrorCategory.TIMEOUT,
            )

        if returncode != 0:
            output = stderr or stdout
            category = classify_error(output)
            logger.error(f"{operation} failed for {domain} ({category.value}): {output[:500]}")
            raise DeploymentExecutionError(
                f"{operation} failed: {output.strip()[:200]}",
                domain,
                category=category,
                stderr=stderr,
            )

        if stderr and "deprecated" not in stderr.lower():
            logger.warning(f"{operation} warnings for {domain}: {stderr[:500]}")
        return stdout

    async def deploy(self, domain: str, config: DomainConfig) -> Dict[str, Any]:
        """
        Run the deploy command for the config's environment.

        Args:
            domain: Domain being deployed
            config: Resolved domain configuration

        Returns:
            Dict with url (custom URL) and worker_url (parsed from CLI output)
        """
        cmd = [*self.platform.deploy_command, "--env", config.environment or self.environment]
        stdout = await self._run_or_raise(cmd, domain, "Deploy")

        match = URL_PATTERN.search(stdout)
        worker_url = match.group(0) if match else None
        logger.info(f"Deployed {domain}: worker URL {worker_url}, custom URL {config.custom_url}")

        return {"url": config.custom_url, "worker_url": worker_url}

    async def rollback(self, domain: str, config: DomainConfig) -> None:
        cmd = [*self.platform.rollback_command, "--env", config.environment or self.environment]
        await self._run_or_raise(cmd, domain, "Rollback")
        logger.info(f"Rolled back last publish for {domain}")


class CommandResourceProvisioner:
    """Manages relational databases through the platform's storage CLI."""

    def __init__(
        self,
        platform: PlatformSettings,
        timeout: float = 120.0,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.platform = platform
        self.runner = runner or CommandRunner(platform, timeout)

    async def _run_or_raise(self, args: List[str], name: str, operation: str) -> str:
        cmd = [*self.platform.storage_command, *args]
        try:
            returncode, stdout, stderr = await self.runner.run(cmd)
        except asyncio.TimeoutError:
            raise ProvisioningError(
                f"{operation} timed out for {name}", category=ErrorCategory.TIMEOUT
            )
        if returncode != 0:
            output = stderr or stdout
            raise ProvisioningError(
                f"{operation} failed for {name}: {output.strip()[:200]}",
                category=classify_error(output),
            )
        return stdout

    async def _list(self) -> List[Dict[str, Any]]:
        stdout = await self._run_or_raise(["list", "--json"], "*", "Database list")
        try:
            databases = json.loads(stdout or "[]")
        except json.JSONDecodeError as e:
            raise ProvisioningError(f"Unparseable database list: {e}")
        return databases if isinstance(databases, list) else []

    async def exists(self, name: str) -> bool:
        return any(db.get("name") == name for db in await self._list())

    async def get_id(self, name: str) -> str:
        for db in await self._list():
            if db.get("name") == name:
                return str(db.get("uuid") or db.get("id"))
        raise ProvisioningError(
            f"Database not found: {name}", category=ErrorCategory.STORAGE_NOT_FOUND
        )

    async def create(self, name: str) -> str:
        stdout = await self._run_or_raise(["create", name], name, "Database create")
        match = DATABASE_ID_PATTERN.search(stdout)
        if match:
            return match.group(1)
        return await self.get_id(name)

    async def delete(self, name: str) -> None:
        await self._run_or_raise(["delete", name, "-y"], name, "Database delete")

    async def apply_migrations(self, binding_name: str, environment: str, remote: bool) -> int:
        args = ["migrations", "apply", binding_name, "--env", environment]
        if remote:
            args.append("--remote")
        stdout = await self._run_or_raise(args, binding_name, "Migrations")
        return len(set(MIGRATION_PATTERN.findall(stdout)))
