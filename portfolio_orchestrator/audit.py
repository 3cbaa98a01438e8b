"""
Audit trail persistence for orchestration runs.

Every audit entry of a run is appended to a JSONL file so the trail survives
the process. Entries are also emitted on the dedicated audit log stream.
"""

import json
import logging
from pathlib import Path
from typing import Iterator, Optional

from portfolio_orchestrator.logging_config import AUDIT_LOGGER_NAME
from portfolio_orchestrator.models import AuditEntry

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


class AuditTrail:
    """Append-only JSONL writer for one orchestration run."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """
        Initialize the audit trail.

        Args:
            path: JSONL file to append to. None disables file persistence.
        """
        self.path = path

    @classmethod
    def for_run(cls, state_dir: Path, orchestration_id: str) -> "AuditTrail":
        return cls(Path(state_dir) / f"{orchestration_id}.audit.jsonl")

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def append(self, entry: AuditEntry) -> None:
        """
        Persist an audit entry.

        Args:
            entry: Entry to append
        """
        audit_logger.info(
            f"{entry.event} [{entry.domain}]",
            extra={"orchestration_id": entry.orchestration_id, "domain": entry.domain},
        )

        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Append to audit log (JSONL format)
            with open(self.path, "a") as f:
                f.write(json.dumps(entry.model_dump(), default=str) + "\n")
        except Exception as e:
            # Don't fail orchestration due to audit logging issues
            logger.error(f"Failed to write audit log: {e}")

    def read(self) -> Iterator[AuditEntry]:
        """Yield persisted entries in append order."""
        if self.path is None or not self.path.exists():
            return
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield AuditEntry(**json.loads(line))
