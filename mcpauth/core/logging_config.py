"""Process-wide logging setup."""

import logging
from collections.abc import Mapping
from pathlib import Path

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

REDACTED = "[REDACTED]"
SENSITIVE_HEADERS = frozenset(
    {"authorization", "cookie", "set-cookie", "x-api-key", "x-auth-token"}
)


def _parse_level(level: str) -> int:
    name = level.strip().upper()
    if name == "TRACE":
        return TRACE
    if name == "WARN":
        name = "WARNING"
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
) -> None:
    """Configure the root logger with a timestamped format.

    Unknown level names fall back to INFO. ``TRACE`` sits below DEBUG and
    enables request/response body logging on the MCP endpoint.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=_parse_level(level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of ``headers`` with credentials replaced by a placeholder."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }
