"""
Utility functions for deployment operations.

Pure functions for batching, summaries and error records, plus the fixed
per-call timeout wrapper used around every external call.
"""

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from portfolio_orchestrator.exceptions import DeploymentExecutionError, ErrorCategory
from portfolio_orchestrator.models import DeploymentSummary, DomainResult, utc_now

T = TypeVar("T")


def chunk_domains(domains: Sequence[str], size: int) -> List[List[str]]:
    """
    Split domains into consecutive batches.

    Produces ceil(n / size) batches; all but the last hold exactly size domains.

    Args:
        domains: Domains in deployment order
        size: Batch size

    Returns:
        Batches preserving input order
    """
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [list(domains[i : i + size]) for i in range(0, len(domains), size)]


def build_deployment_summary(
    total: int,
    successful: List[DomainResult],
    failed: List[DomainResult],
    total_batches: int,
) -> DeploymentSummary:
    """
    Aggregate statistics for a portfolio deployment.

    Args:
        total: Number of domains in scope
        successful: Successful domain results
        failed: Failed domain results
        total_batches: Batches processed

    Returns:
        Deployment summary
    """
    success_rate = round(len(successful) / total * 100, 1) if total else 0.0
    average = (
        round(sum(r.duration for r in successful) / len(successful), 1) if successful else 0.0
    )
    return DeploymentSummary(
        total=total,
        successful=len(successful),
        failed=len(failed),
        success_rate=success_rate,
        average_duration=average,
        total_batches=total_batches,
    )


def error_record(phase: Optional[str], error: BaseException) -> Dict[str, Any]:
    """Structured error entry stored in a domain's state."""
    record: Dict[str, Any] = {
        "phase": phase,
        "error": str(error),
        "type": type(error).__name__,
        "timestamp": utc_now(),
    }
    category = getattr(error, "category", None)
    if isinstance(category, ErrorCategory):
        record["category"] = category.value
    return record


async def call_with_timeout(
    awaitable: Awaitable[T], timeout: float, domain: Optional[str], operation: str
) -> T:
    """
    Await an external call under a fixed ceiling.

    Args:
        awaitable: The external call
        timeout: Ceiling in seconds
        domain: Domain the call is made for
        operation: Short name of the call, used in the error

    Returns:
        The call's result

    Raises:
        DeploymentExecutionError: The ceiling was exceeded (category timeout)
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise DeploymentExecutionError(
            f"{operation} timed out after {timeout}s",
            domain,
            category=ErrorCategory.TIMEOUT,
        )
