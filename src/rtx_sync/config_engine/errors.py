"""Error types raised and reported by the Config Engine.

Every error carries the entity kind, the resolved identity (when known) and
the exact command text involved, so callers can build a diagnostic without
the raw device transcript.
"""
from typing import Any, Optional


class ReconcileError(Exception):
    """Base class for all Config Engine errors."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identity: Optional[str] = None,
        command: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.identity = identity
        self.command = command

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "kind": self.kind,
            "identity": self.identity,
            "command": self.command,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.kind:
            parts.append(f"kind={self.kind}")
        if self.identity:
            parts.append(f"identity={self.identity}")
        if self.command:
            parts.append(f"command={self.command!r}")
        return " | ".join(parts)


class ParseError(ReconcileError):
    """A line or record could not be parsed. Collected, never fatal."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identity: Optional[str] = None,
        command: Optional[str] = None,
        line_number: Optional[int] = None,
    ):
        super().__init__(message, kind=kind, identity=identity, command=command)
        self.line_number = line_number

    @property
    def line(self) -> Optional[str]:
        return self.command

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["line_number"] = self.line_number
        return data


class IdentityConflictError(ReconcileError):
    """Two desired entities of one kind resolved to the same identity."""


class CommandRejectedError(ReconcileError):
    """The device refused a configuration line.

    ``index`` is the position of the offending line inside the submitted
    batch. The executor fills in which operations ran and which did not.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identity: Optional[str] = None,
        command: Optional[str] = None,
        index: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message, kind=kind, identity=identity, command=command)
        self.index = index
        self.output = output
        self.executed_ops: list = []
        self.pending_ops: list = []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["index"] = self.index
        data["output"] = self.output
        data["executed"] = [f"{op.op.value} {op.kind} {op.identity}" for op in self.executed_ops]
        data["pending"] = [f"{op.op.value} {op.kind} {op.identity}" for op in self.pending_ops]
        return data


class TransientIOError(ReconcileError):
    """Connection-level failure (reset, timeout). Retried by the executor.

    ``completed`` is the number of submitted lines the device is known to
    have finished before the failure.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identity: Optional[str] = None,
        command: Optional[str] = None,
        completed: int = 0,
    ):
        super().__init__(message, kind=kind, identity=identity, command=command)
        self.completed = completed


class PartialApplyError(ReconcileError):
    """A batch was cancelled between commands; some operations did not run."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identity: Optional[str] = None,
        command: Optional[str] = None,
    ):
        super().__init__(message, kind=kind, identity=identity, command=command)
        self.executed_ops: list = []
        self.pending_ops: list = []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["executed"] = [f"{op.op.value} {op.kind} {op.identity}" for op in self.executed_ops]
        data["pending"] = [f"{op.op.value} {op.kind} {op.identity}" for op in self.pending_ops]
        return data
