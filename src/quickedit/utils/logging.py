"""Structured logging setup for quickedit."""

import structlog
from pathlib import Path
from typing import Any, Optional
import os


def configure_logging(log_file: Optional[Path] = None) -> None:
    """
    Configure structlog for JSON logging to ~/.cache/quickedit/logs/quickedit.log.

    Log level can be controlled via QUICKEDIT_LOG_LEVEL environment variable:
    - Set to "DEBUG" to see every streamed chunk and store call
    - Defaults to "INFO" if not set

    Log levels:
    - DEBUG: Stream chunks, store request payloads, placeholder expansion
    - INFO: Session state changes, mutation plans, queue activity
    - WARNING: Integrity mismatches, fallbacks, partial failures
    - ERROR: Generation failures, failed store calls

    Args:
        log_file: Optional override for the log file location

    Example:
        # Enable debug logging
        export QUICKEDIT_LOG_LEVEL=DEBUG
        quickedit edit --block 20251028234416-aw9bzvx "Make it shorter"

        # View logs with jq for readability:
        tail -f ~/.cache/quickedit/logs/quickedit.log | jq .
    """
    if log_file is None:
        log_dir = Path.home() / ".cache" / "quickedit" / "logs"
        log_file = log_dir / "quickedit.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = os.environ.get("QUICKEDIT_LOG_LEVEL", "INFO").upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
    if log_level not in valid_levels:
        log_level = "INFO"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=open(log_file, "a")),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Structured logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("session_state_changed", session_id="edit_1", state="streaming")
    """
    return structlog.get_logger(name)


def session_log_context(session_id: str) -> Any:
    """
    Bind ``session_id`` to every log line emitted inside the block.

    The binding lives in structlog's context variables, so store and LLM
    client calls made on behalf of a session carry its id without being
    passed it. Each asyncio task has its own copy of the context.

    Example:
        >>> with session_log_context("edit_1a2b3c4d"):
        ...     await store.insert_unit("Hello", anchor_id)  # logged with session_id
    """
    return structlog.contextvars.bound_contextvars(session_id=session_id)
