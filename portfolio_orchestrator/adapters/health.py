"""
HTTP health checker for deployed services.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from portfolio_orchestrator.models import HealthResult

logger = logging.getLogger(__name__)


class HttpHealthChecker:
    """Probes `<url>/health` with a single GET request."""

    def __init__(
        self,
        timeout: float = 15.0,
        path: str = "/health",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            timeout: Request timeout in seconds
            path: Health endpoint path appended to the service URL
            headers: Extra request headers
        """
        self.timeout = timeout
        self.path = path
        self.headers = {"User-Agent": "portfolio-orchestrator"}
        if headers:
            self.headers.update(headers)

    async def check_health(self, url: str) -> HealthResult:
        """
        Probe a service once.

        Args:
            url: Base URL of the service

        Returns:
            healthy on HTTP 200, unhealthy on any other status, error when the
            request could not be made
        """
        target = f"{url.rstrip('/')}{self.path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self.headers) as client:
                start_time = time.monotonic()
                response = await client.get(target)
                response_time_ms = round((time.monotonic() - start_time) * 1000, 1)

            details: Optional[Dict[str, Any]] = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    details = body
            except ValueError:
                pass

            status = "healthy" if response.status_code == 200 else "unhealthy"
            if status == "unhealthy":
                logger.debug(f"Health check {target} returned HTTP {response.status_code}")

            return HealthResult(
                url=url,
                status=status,
                status_code=response.status_code,
                response_time_ms=response_time_ms,
                details=details,
            )
        except httpx.TimeoutException:
            logger.warning(f"Health check timeout for {target}")
            return HealthResult(url=url, status="error", details={"error": "timeout"})
        except httpx.HTTPError as e:
            logger.warning(f"Health check failed for {target}: {e}")
            return HealthResult(url=url, status="error", details={"error": str(e)})
