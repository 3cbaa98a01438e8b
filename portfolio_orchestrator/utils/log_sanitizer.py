"""
Log sanitization utilities to prevent log injection attacks.
"""

import re
from typing import Any


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """
    Sanitize a value for safe logging.

    Removes control characters, newlines, and other potentially dangerous characters
    that could be used for log injection attacks.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output (default 100)

    Returns:
        Sanitized string safe for logging
    """
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f\r\n\t]", "", str(value))

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def sanitize_domain(domain: str) -> str:
    """
    Sanitize a domain name for logging.

    Domain names should only contain alphanumeric characters, dots and hyphens.

    Args:
        domain: The domain name to sanitize

    Returns:
        Sanitized domain name
    """
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "", str(domain))
    return sanitized[:253]
