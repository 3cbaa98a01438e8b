"""
Portfolio run state.

Owns per-domain deployment state, the append-only audit log and the LIFO
rollback plan for a single orchestration run, and persists them to disk.
"""

import asyncio
import json
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiofiles  # type: ignore

from portfolio_orchestrator.audit import AuditTrail
from portfolio_orchestrator.exceptions import (
    RollbackActionError,
    StateTransitionError,
    UnknownDomainError,
)
from portfolio_orchestrator.models import (
    TERMINAL_STATUSES,
    AuditEntry,
    DomainDeploymentState,
    PortfolioState,
    RollbackAction,
    RollbackFailure,
    RollbackResult,
    is_allowed_transition,
    utc_now,
)
from portfolio_orchestrator.utils.log_sanitizer import sanitize_domain

logger = logging.getLogger(__name__)

# Reverses one recorded action; keyed by RollbackAction.type
RollbackHandler = Callable[[RollbackAction], Awaitable[Any]]


def _id_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")


def _parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def generate_orchestration_id() -> str:
    """Unique, time-prefixed identifier for a run."""
    return f"orchestration-{_id_timestamp()}-{secrets.token_hex(6)}"


def generate_deployment_id(domain: str) -> str:
    """Unique, time-prefixed identifier for one domain's deployment."""
    return f"deploy-{domain}-{_id_timestamp()}-{secrets.token_hex(4)}"


def generate_operation_id(prefix: str = "op") -> str:
    """Unique, time-prefixed identifier for an operation (coordination, discovery, ...)."""
    return f"{prefix}_{_id_timestamp()}_{secrets.token_hex(4)}"


class StateManager:
    """
    Manages the state of one orchestration run.

    All domain state changes go through update_domain_state(), which refuses
    to move a domain backwards and records every change in the audit log.
    """

    # Exposed as methods so callers holding only a StateManager can mint IDs
    generate_orchestration_id = staticmethod(generate_orchestration_id)
    generate_deployment_id = staticmethod(generate_deployment_id)
    generate_operation_id = staticmethod(generate_operation_id)

    def __init__(
        self,
        environment: str = "production",
        state_dir: Optional[Union[str, Path]] = None,
        dry_run: bool = False,
        persistence_enabled: bool = True,
        orchestration_id: Optional[str] = None,
    ) -> None:
        """
        Initialize state for a new run.

        Args:
            environment: Target environment of the run
            state_dir: Directory for the audit log and snapshot
            dry_run: Dry runs never write to disk
            persistence_enabled: Write the audit log and snapshot to state_dir
            orchestration_id: Use a fixed run ID instead of generating one
        """
        self.environment = environment
        self.dry_run = dry_run
        self.state_dir = Path(state_dir) if state_dir else None
        self.persistence_enabled = persistence_enabled and not dry_run and self.state_dir is not None

        self.portfolio_state = PortfolioState(
            orchestration_id=orchestration_id or generate_orchestration_id(),
            environment=environment,
            metadata={"dry_run": dry_run, "persistence_enabled": self.persistence_enabled},
        )

        if self.persistence_enabled and self.state_dir is not None:
            self.audit_trail = AuditTrail.for_run(self.state_dir, self.orchestration_id)
            self.snapshot_file: Optional[Path] = (
                self.state_dir / f"{self.orchestration_id}.json"
            )
        else:
            self.audit_trail = AuditTrail(None)
            self.snapshot_file = None

        self._save_lock = asyncio.Lock()

    @property
    def orchestration_id(self) -> str:
        return self.portfolio_state.orchestration_id

    # Domain state

    def initialize_domain_states(self, domains: List[str]) -> List[str]:
        """
        Create a pending state record for each domain.

        Domains that already have a record are left untouched.

        Args:
            domains: Domain names

        Returns:
            Domains that were newly added
        """
        added: List[str] = []
        for domain in domains:
            if domain in self.portfolio_state.domain_states or domain in added:
                continue
            self.portfolio_state.domain_states[domain] = DomainDeploymentState(
                domain=domain,
                deployment_id=generate_deployment_id(domain),
                environment=self.environment,
            )
            added.append(domain)

        if added:
            self.log_audit_event(
                "PORTFOLIO_INITIALIZED",
                "ALL",
                {"total_domains": len(self.portfolio_state.domain_states), "domains": added},
            )
        return added

    def get_domain_state(self, domain: str) -> Optional[DomainDeploymentState]:
        return self.portfolio_state.domain_states.get(domain)

    def require_domain_state(self, domain: str) -> DomainDeploymentState:
        state = self.get_domain_state(domain)
        if state is None:
            raise UnknownDomainError(domain)
        return state

    def update_domain_state(self, domain: str, patch: Dict[str, Any]) -> DomainDeploymentState:
        """
        Apply a partial update to a domain's state.

        Args:
            domain: Domain name
            patch: Fields to replace

        Returns:
            The updated state

        Raises:
            UnknownDomainError: Domain has no state record in this run
            StateTransitionError: The status change would move the domain backwards
        """
        current = self.require_domain_state(domain)
        new_status = patch.get("status", current.status)

        if not is_allowed_transition(current.status, new_status):
            raise StateTransitionError(
                f"Cannot move {domain} from {current.status} to {new_status}", domain
            )

        now = utc_now()
        values = {**current.model_dump(), **patch, "last_updated": now}
        if new_status != "pending" and current.started_at is None and "started_at" not in patch:
            values["started_at"] = now
        if new_status in TERMINAL_STATUSES and new_status != current.status:
            if "completed_at" not in patch:
                values["completed_at"] = now

        updated = DomainDeploymentState.model_validate(values)
        self.portfolio_state.domain_states[domain] = updated

        details: Dict[str, Any] = {"fields": sorted(patch.keys())}
        if new_status != current.status:
            details["from"] = current.status
            details["to"] = new_status
        self.log_audit_event("STATE_UPDATED", domain, details)
        return updated

    def add_domain_warning(self, domain: str, warning: str) -> DomainDeploymentState:
        state = self.require_domain_state(domain)
        return self.update_domain_state(domain, {"warnings": [*state.warnings, warning]})

    # Audit log

    def log_audit_event(
        self, event: str, domain: str = "ALL", details: Optional[Dict[str, Any]] = None
    ) -> AuditEntry:
        """
        Append an entry to the audit log.

        Args:
            event: Event type (e.g. DOMAIN_DEPLOYED)
            domain: Domain name or ALL for portfolio events
            details: Event details

        Returns:
            The appended entry
        """
        entry = AuditEntry(
            orchestration_id=self.orchestration_id,
            event=event,
            domain=domain,
            details=details or {},
            sequence_number=len(self.portfolio_state.audit_log) + 1,
        )
        self.portfolio_state.audit_log.append(entry)
        self.audit_trail.append(entry)
        return entry

    def get_audit_log(
        self,
        event: Optional[str] = None,
        domain: Optional[str] = None,
        since: Optional[Union[str, datetime]] = None,
    ) -> List[AuditEntry]:
        """
        Filter the audit log.

        Args:
            event: Only entries of this event type
            domain: Only entries for this domain
            since: Only entries at or after this time

        Returns:
            Matching entries in sequence order
        """
        entries = list(self.portfolio_state.audit_log)
        if event:
            entries = [e for e in entries if e.event == event]
        if domain:
            entries = [e for e in entries if e.domain == domain]
        if since is not None:
            threshold = _parse_timestamp(since)
            entries = [e for e in entries if _parse_timestamp(e.timestamp) >= threshold]
        return entries

    # Rollback plan

    def record_rollback_action(
        self,
        domain: str,
        type: str,
        description: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> RollbackAction:
        """
        Record a reversible side effect.

        The action goes to the head of the rollback plan and is mirrored into
        the domain's own record.

        Args:
            domain: Domain the side effect belongs to
            type: Handler key used to reverse it
            description: Human-readable description
            payload: Data the handler needs to reverse it

        Returns:
            The recorded action
        """
        state = self.require_domain_state(domain)
        action = RollbackAction(
            action_id=generate_operation_id("rb"),
            type=type,
            description=description,
            domain=domain,
            payload=payload or {},
        )
        self.portfolio_state.rollback_plan.insert(0, action)
        state.rollback_actions.append(action)

        self.log_audit_event(
            "ROLLBACK_ACTION_RECORDED",
            domain,
            {"action_id": action.action_id, "type": type, "description": description},
        )
        return action

    def get_rollback_plan(self, domain: Optional[str] = None) -> List[RollbackAction]:
        """Pending rollback actions, most recent first."""
        if domain:
            return [a for a in self.portfolio_state.rollback_plan if a.domain == domain]
        return list(self.portfolio_state.rollback_plan)

    async def execute_rollback(
        self, handlers: Dict[str, RollbackHandler], domain: Optional[str] = None
    ) -> RollbackResult:
        """
        Reverse recorded actions in exact reverse order of recording.

        A failing action is logged and skipped; the remaining actions still run.
        Every affected domain ends rolled-back.

        Args:
            handlers: Reversal handler per action type
            domain: Restrict rollback to one domain's actions

        Returns:
            Executed and failed actions
        """
        result = RollbackResult()
        affected: List[str] = []
        if domain is not None:
            self.require_domain_state(domain)
            affected.append(domain)

        self.log_audit_event(
            "ROLLBACK_STARTED",
            domain or "ALL",
            {"actions": len(self.get_rollback_plan(domain))},
        )

        while True:
            pending = self.get_rollback_plan(domain)
            if not pending:
                break
            action = pending[0]
            self.portfolio_state.rollback_plan.remove(action)
            if action.domain not in affected:
                affected.append(action.domain)

            try:
                handler = handlers.get(action.type)
                if handler is None:
                    raise RollbackActionError(
                        f"No rollback handler for action type {action.type}",
                        action.domain,
                        action.action_id,
                    )
                await handler(action)
                result.executed.append(action.action_id)
                logger.info(
                    f"Rolled back {action.type} for {sanitize_domain(action.domain)}: "
                    f"{action.description}"
                )
            except Exception as e:
                logger.error(
                    f"Rollback action {action.action_id} ({action.type}) failed for "
                    f"{sanitize_domain(action.domain)}: {e}"
                )
                result.failed.append(
                    RollbackFailure(
                        action_id=action.action_id,
                        domain=action.domain,
                        type=action.type,
                        error=str(e),
                    )
                )
                self.log_audit_event(
                    "ROLLBACK_ACTION_FAILED",
                    action.domain,
                    {"action_id": action.action_id, "type": action.type, "error": str(e)},
                )

        for name in affected:
            self.update_domain_state(name, {"status": "rolled-back", "current_phase": None})
            result.domains_rolled_back.append(name)

        self.log_audit_event(
            "ROLLBACK_COMPLETED",
            domain or "ALL",
            {
                "executed": len(result.executed),
                "failed": len(result.failed),
                "domains": result.domains_rolled_back,
            },
        )
        return result

    # Portfolio

    def mark_portfolio_completed(self) -> None:
        self.portfolio_state.ended_at = utc_now()
        self.log_audit_event("PORTFOLIO_COMPLETED", "ALL", self.get_portfolio_summary())

    def get_portfolio_summary(self) -> Dict[str, Any]:
        """Counts and timing for the run."""
        state = self.portfolio_state
        statuses = [s.status for s in state.domain_states.values()]
        metrics = state.metrics

        started = _parse_timestamp(state.started_at)
        ended = _parse_timestamp(state.ended_at) if state.ended_at else datetime.now(timezone.utc)

        return {
            "orchestration_id": state.orchestration_id,
            "environment": state.environment,
            "total_domains": metrics.total,
            "completed": metrics.completed,
            "failed": metrics.failed,
            "rolled_back": metrics.rolled_back,
            "in_progress": sum(
                1 for s in statuses if s != "pending" and s not in TERMINAL_STATUSES
            ),
            "pending": statuses.count("pending"),
            "started_at": state.started_at,
            "ended_at": state.ended_at,
            "duration": (ended - started).total_seconds(),
            "audit_log_size": len(state.audit_log),
        }

    def get_state_stats(self) -> Dict[str, Any]:
        return {
            "orchestration_id": self.orchestration_id,
            "domain_count": len(self.portfolio_state.domain_states),
            "audit_log_size": len(self.portfolio_state.audit_log),
            "rollback_actions_count": len(self.portfolio_state.rollback_plan),
            "persistence_enabled": self.persistence_enabled,
            "dry_run": self.dry_run,
        }

    async def save_snapshot(self) -> Optional[Path]:
        """
        Write the full run state to disk atomically.

        Returns:
            Path written, or None when persistence is disabled or the write failed
        """
        if self.snapshot_file is None:
            return None

        try:
            self.snapshot_file.parent.mkdir(parents=True, exist_ok=True)
            data = self.portfolio_state.model_dump()
            data["summary"] = self.get_portfolio_summary()
            data["saved_at"] = utc_now()

            # Write to temp file first, then move atomically
            async with self._save_lock:
                temp_file = self.snapshot_file.with_suffix(".tmp")
                async with aiofiles.open(temp_file, "w") as f:
                    await f.write(json.dumps(data, indent=2, default=str))

                temp_file.replace(self.snapshot_file)
            logger.debug(f"Saved portfolio snapshot to {self.snapshot_file}")
            return self.snapshot_file
        except Exception as e:
            logger.error(f"Failed to save portfolio snapshot: {e}")
            return None
