"""
Error taxonomy for portfolio orchestration.

Phase-level errors are raised by handlers and collaborators and converted into
structured per-domain failures by the deployment coordinator. Coordination-level
errors (dependency cycles, cross-domain incompatibility) abort a run before any
side effect takes place.
"""

from enum import Enum
from typing import List, Optional


class ErrorCategory(str, Enum):
    """Typed failure categories reported by external collaborators."""

    STORAGE_BINDING_MISMATCH = "storage_binding_mismatch"
    STORAGE_NOT_FOUND = "storage_not_found"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def recoverable(self) -> bool:
        """Whether a single repair-and-retry is allowed for this category."""
        return self in (ErrorCategory.STORAGE_BINDING_MISMATCH, ErrorCategory.STORAGE_NOT_FOUND)


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""

    def __init__(self, message: str, domain: Optional[str] = None) -> None:
        super().__init__(message)
        self.domain = domain


class ValidationError(OrchestrationError):
    """Prerequisite or compatibility failure. Blocks the affected domain."""

    def __init__(
        self, message: str, domain: Optional[str] = None, issues: Optional[List[str]] = None
    ) -> None:
        super().__init__(message, domain)
        self.issues = issues or []


class CompatibilityError(ValidationError):
    """Cross-domain incompatibility. Aborts the whole coordination run."""


class ProvisioningError(OrchestrationError):
    """Storage or secret side-effect failure."""

    def __init__(
        self,
        message: str,
        domain: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
    ) -> None:
        super().__init__(message, domain)
        self.category = category

    @property
    def recoverable(self) -> bool:
        return self.category.recoverable


class DeploymentExecutionError(OrchestrationError):
    """The deployment executor call failed."""

    def __init__(
        self,
        message: str,
        domain: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message, domain)
        self.category = category
        self.stderr = stderr

    @property
    def recoverable(self) -> bool:
        return self.category.recoverable


class DependencyCycleError(OrchestrationError):
    """The in-scope dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class CoordinationAbortedError(OrchestrationError):
    """A coordination phase failed unrecoverably; remaining phases are skipped."""

    def __init__(self, message: str, phase: str) -> None:
        super().__init__(message)
        self.phase = phase


class RollbackActionError(OrchestrationError):
    """Reversing a single rollback action failed."""

    def __init__(self, message: str, domain: Optional[str] = None, action_id: Optional[str] = None):
        super().__init__(message, domain)
        self.action_id = action_id


class UnknownDomainError(OrchestrationError):
    """A domain was referenced that has no state record in this run."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain state not found: {domain}", domain)


class StateTransitionError(OrchestrationError):
    """A status patch would move a domain backwards."""


class ConfigurationError(OrchestrationError):
    """Invalid orchestrator configuration."""


class VerificationWarning(UserWarning):
    """Health verification did not pass after the configured retries. Non-fatal."""

    def __init__(self, domain: str, url: str, attempts: int, reason: str) -> None:
        super().__init__(
            f"Health check for {domain} at {url} did not pass after {attempts} attempts: {reason}"
        )
        self.domain = domain
        self.url = url
        self.attempts = attempts
        self.reason = reason
