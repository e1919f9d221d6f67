"""Utility modules for retries, logging and auditing."""
from .audit_log import ChangeRecord, ChangeTracker, get_recent_changes, sanitize_command
from .connection import RETRYABLE_EXCEPTIONS, retrying, with_retry
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)

__all__ = [
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "sanitize_command",
    "RETRYABLE_EXCEPTIONS",
    "retrying",
    "with_retry",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
]
