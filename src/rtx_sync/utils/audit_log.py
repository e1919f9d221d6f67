"""Audit logging for configuration changes.

Every batch the executor applies (or previews) is written as one JSON line:
- Timestamped entries for all config modifications
- Before/after entity state, so a change can be undone by hand
- Command lines with secrets masked
- Separate audit log file
"""
import json
import logging
import os
import re
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

audit_logger = logging.getLogger("rtxsync.audit")

REDACTED = "[REDACTED]"

# Command shapes that carry a secret as their last argument(s)
_SECRET_PATTERNS = [
    re.compile(r"^(\s*ipsec ike pre-shared-key \d+ (?:text )?)\S.*$", re.IGNORECASE),
    re.compile(r"^(\s*(?:login|administrator) password(?: encrypted)?\s+)\S.*$", re.IGNORECASE),
    re.compile(r"^(\s*pp auth (?:accept|myname) .*?\s)\S+$", re.IGNORECASE),
]
# Any other line mentioning one of these words is masked entirely
_SENSITIVE_WORDS = ("password", "secret", "community", "credential", "token")


def default_audit_dir() -> Path:
    """Directory for audit logs (env RTXSYNC_AUDIT_DIR, default ~/.rtx-sync)."""
    return Path(os.environ.get("RTXSYNC_AUDIT_DIR", os.path.expanduser("~/.rtx-sync")))


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ``default_audit_dir()``

    Returns:
        Path of the audit log file
    """
    directory = Path(log_dir) if log_dir else default_audit_dir()
    directory.mkdir(parents=True, exist_ok=True)
    audit_file = directory / "audit.log"

    audit_logger.setLevel(logging.INFO)

    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )

    # Use JSON format for machine-readability
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to root logger
    audit_logger.propagate = False
    return audit_file


def sanitize_command(line: str) -> str:
    """Mask secrets in a command line before it is logged.

    Known secret-bearing commands keep their prefix, so the log still shows
    which setting changed:

        >>> sanitize_command("ipsec ike pre-shared-key 1 text s3cr3t")
        'ipsec ike pre-shared-key 1 text [REDACTED]'
    """
    if not line:
        return line
    for pattern in _SECRET_PATTERNS:
        match = pattern.match(line)
        if match:
            return f"{match.group(1)}{REDACTED}"
    lower = line.lower()
    if any(word in lower for word in _SENSITIVE_WORDS):
        return REDACTED
    return line


def _sanitize_state(state: Any) -> Any:
    """Mask secret-looking field values in entity dicts."""
    if isinstance(state, dict):
        return {
            k: REDACTED if _is_sensitive_field(k) and v is not None else _sanitize_state(v)
            for k, v in state.items()
        }
    if isinstance(state, list):
        return [_sanitize_state(v) for v in state]
    return state


def _is_sensitive_field(name: str) -> bool:
    lower = str(name).lower()
    return lower in ("pre_shared_key", "api_key") or any(word in lower for word in _SENSITIVE_WORDS)


@dataclass
class ChangeRecord:
    """Record of a configuration change."""
    timestamp: str
    device_id: str
    operation: str  # apply, apply_dry_run, save
    user: str
    dry_run: bool
    success: bool
    parameters: dict
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    output: str = ""
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        """Parse from JSON string."""
        data = json.loads(json_str)
        return cls(**data)


class ChangeTracker:
    """Track and log configuration changes for one device."""

    def __init__(self, device_id: str, user: str = "system"):
        self.device_id = device_id
        self.user = user

    def log_change(
        self,
        operation: str,
        parameters: dict,
        success: bool,
        output: str = "",
        error: Optional[str] = None,
        dry_run: bool = False,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        user: Optional[str] = None,
    ) -> ChangeRecord:
        """Log a configuration change.

        Args:
            operation: The operation performed (e.g., "apply")
            parameters: Parameters passed to the operation; a ``commands``
                list is sanitized line by line
            success: Whether the operation succeeded
            output: Command output or result message
            error: Error message if failed
            dry_run: Whether this was a dry-run (no actual changes)
            before_state: State before the change
            after_state: State after the change
            user: Overrides the tracker's user for this record

        Returns:
            The ChangeRecord that was logged
        """
        parameters = dict(parameters)
        if "commands" in parameters:
            parameters["commands"] = [sanitize_command(c) for c in parameters["commands"]]

        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            device_id=self.device_id,
            operation=operation,
            user=user or self.user,
            dry_run=dry_run,
            success=success,
            parameters=parameters,
            before_state=_sanitize_state(before_state),
            after_state=_sanitize_state(after_state),
            output=output[:1000] if output else "",  # Truncate long output
            error=error,
        )

        if not audit_logger.handlers:
            setup_audit_logging()
        audit_logger.info(record.to_json())

        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from audit log.

    Args:
        log_file: Path to audit log. Defaults to ``<audit dir>/audit.log``
        device_id: Filter by device ID
        operation: Filter by operation type
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = str(default_audit_dir() / "audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if device_id and record.device_id != device_id:
                continue
            if operation and record.operation != operation:
                continue
            records.append(record)

    # Return most recent first, limited
    return list(reversed(records[-limit:]))
