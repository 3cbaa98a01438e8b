"""
Centralized logging configuration for the portfolio orchestrator.

Implements file-based logging with rotation, multiple log streams,
and structured logging for correlating every line with one orchestration run.
"""
# mypy: ignore-errors

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import json
from datetime import datetime, timezone

AUDIT_LOGGER_NAME = "portfolio_orchestrator.audit"
DOMAIN_LOGGER_NAME = "portfolio_orchestrator.domain_lifecycle"

# Extra attributes copied from log records into structured output
_CONTEXT_FIELDS = ("orchestration_id", "coordination_id", "domain", "deployment_id", "duration_ms")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON for better parsing."""
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console and file logs."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        """Initialize formatter with optional color support."""
        self.use_colors = use_colors
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format with optional colors for console output."""
        if self.use_colors and record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    log_dir: str = "/var/log/portfolio-orchestrator",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 10,
) -> None:
    """
    Configure logging for the portfolio orchestrator.

    Args:
        log_dir: Directory for log files
        console_level: Console logging level
        file_level: File logging level
        use_json: Use JSON formatting for files
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level))
    console_handler.setFormatter(HumanReadableFormatter(use_colors=True))
    root_logger.addHandler(console_handler)

    file_formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    # Main application log
    main_handler = logging.handlers.RotatingFileHandler(
        log_path / "orchestrator.log", maxBytes=max_bytes, backupCount=backup_count
    )
    main_handler.setLevel(getattr(logging, file_level))
    main_handler.setFormatter(file_formatter)
    root_logger.addHandler(main_handler)

    # Error-only log for monitoring
    error_handler = logging.handlers.RotatingFileHandler(
        log_path / "error.log", maxBytes=max_bytes, backupCount=backup_count
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_formatter)
    root_logger.addHandler(error_handler)

    # Audit trail mirror, always structured
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_handler = logging.handlers.RotatingFileHandler(
        log_path / "audit.log", maxBytes=max_bytes, backupCount=backup_count
    )
    audit_handler.setFormatter(StructuredFormatter())
    audit_logger.addHandler(audit_handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False

    # Per-domain lifecycle log
    domain_logger = logging.getLogger(DOMAIN_LOGGER_NAME)
    domain_handler = logging.handlers.RotatingFileHandler(
        log_path / "domain-lifecycle.log", maxBytes=max_bytes, backupCount=backup_count
    )
    domain_handler.setFormatter(file_formatter)
    domain_logger.addHandler(domain_handler)
    domain_logger.setLevel(logging.DEBUG)
    domain_logger.propagate = False

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized - Console: {console_level}, File: {file_level}, "
        f"Directory: {log_dir}, JSON: {use_json}"
    )


class LogContext:
    """Context manager for adding contextual information to logs."""

    def __init__(self, logger: logging.Logger, **kwargs):
        """
        Initialize log context.

        Args:
            logger: Logger to add context to
            **kwargs: Context fields to add to all logs (e.g. orchestration_id)
        """
        self.logger = logger
        self.context = kwargs
        self.old_factory = None

    def __enter__(self):
        """Enter context and inject fields."""
        old_factory = logging.getLogRecordFactory()
        self.old_factory = old_factory

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            for key, value in self.context.items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context and restore factory."""
        if self.old_factory:
            logging.setLogRecordFactory(self.old_factory)


def log_domain_operation(
    operation: str,
    domain: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
) -> None:
    """
    Log a domain lifecycle operation.

    Args:
        operation: Operation type (phase_started, deployed, rolled_back, etc.)
        domain: Domain name
        details: Additional operation details
        level: Log level (INFO, WARNING, ERROR)
    """
    logger = logging.getLogger(DOMAIN_LOGGER_NAME)

    message = f"Domain operation: {operation} [{domain}]"
    extra: Dict[str, Any] = {"domain": domain}

    if details:
        message += f" - {json.dumps(details, default=str)}"

    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra)
