"""Schema definitions for the Config Engine.

Defines the entity model and all result dataclasses passed between the
parser, reconciler, command builder and executor.
"""
import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from .errors import ReconcileError


class Origin(str, Enum):
    """Which state an entity was taken from."""
    DESIRED = "desired"
    PREVIOUS = "previous"
    ACTUAL = "actual"


class OpType(str, Enum):
    """Type of change operation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def _freeze(value: Any) -> Any:
    """Lists become tuples, sub-entity mappings become plain dicts without None."""
    if isinstance(value, Mapping):
        return {k: _freeze(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    """Inverse of _freeze for serialization."""
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Entity:
    """One configuration object of a given kind.

    Entities are immutable: the reconciler derives new entities (with a
    resolved identity, merged fields or a different origin) instead of
    mutating existing ones. ``None`` field values are dropped, so an absent
    field and a ``None`` field are the same thing.
    """
    kind: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    origin: Origin = Origin.DESIRED
    key: Optional[str] = None
    identity: Optional[str] = None

    def __post_init__(self):
        frozen = {
            name: _freeze(value)
            for name, value in dict(self.fields).items()
            if value is not None
        }
        object.__setattr__(self, "fields", MappingProxyType(frozen))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def label(self) -> str:
        """Best human-readable handle for logs and errors."""
        return self.identity or self.key or ", ".join(
            f"{k}={v}" for k, v in self.fields.items()
        )

    def with_identity(self, identity: str) -> "Entity":
        return replace(self, identity=identity)

    def with_origin(self, origin: Origin) -> "Entity":
        return replace(self, origin=origin)

    def with_fields(self, fields: Mapping[str, Any]) -> "Entity":
        return replace(self, fields=fields)

    def same_fields(self, other: Optional["Entity"]) -> bool:
        """Field equality ignoring origin and identity."""
        if other is None:
            return False
        return self.kind == other.kind and dict(self.fields) == dict(other.fields)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form used for snapshots and JSON output."""
        data: dict[str, Any] = {
            "kind": self.kind,
            "fields": _thaw(dict(self.fields)),
        }
        if self.key is not None:
            data["key"] = self.key
        if self.identity is not None:
            data["identity"] = self.identity
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], origin: Origin = Origin.PREVIOUS) -> "Entity":
        return cls(
            kind=data["kind"],
            fields=data.get("fields", {}),
            origin=origin,
            key=data.get("key"),
            identity=data.get("identity"),
        )


# --- Reconciliation Results ---

@dataclass(frozen=True)
class ChangeOp:
    """A single change operation produced by the reconciler."""
    kind: str
    op: OpType
    identity: str
    before: Optional[Entity] = None
    after: Optional[Entity] = None
    changed_fields: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.op == OpType.UPDATE and self.changed_fields:
            return f"{self.op.value} {self.kind} {self.identity} ({', '.join(self.changed_fields)})"
        return f"{self.op.value} {self.kind} {self.identity}"


@dataclass
class DriftItem:
    """Device state with no desired or previous counterpart."""
    kind: str
    identity: str
    entity: Entity
    details: str = ""


@dataclass
class DriftReport:
    """Actual-only entities found during reconciliation."""
    items: list[DriftItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    @property
    def drift_count(self) -> int:
        return len(self.items)

    def extend(self, other: "DriftReport") -> None:
        self.items.extend(other.items)

    def summary(self) -> str:
        """Human-readable summary."""
        if self.is_empty:
            return "No drift detected"

        lines = [f"Drift: {self.drift_count} unmanaged item(s)"]
        for item in self.items[:5]:
            lines.append(f"  - {item.kind} {item.identity}: {item.details}")
        if self.drift_count > 5:
            lines.append(f"  ... and {self.drift_count - 5} more")
        return "\n".join(lines)

    def to_dict(self) -> list[dict]:
        return [
            {
                "kind": item.kind,
                "identity": item.identity,
                "fields": item.entity.to_dict()["fields"],
                "details": item.details,
            }
            for item in self.items
        ]


@dataclass
class ReconcileResult:
    """Result of reconciling desired, previous and actual state."""
    ops: list[ChangeOp] = field(default_factory=list)
    drift: DriftReport = field(default_factory=DriftReport)
    errors: list[ReconcileError] = field(default_factory=list)
    next_state: dict[str, list[Entity]] = field(default_factory=dict)

    @property
    def no_change(self) -> bool:
        """Check if there are any changes."""
        return len(self.ops) == 0

    @property
    def total_changes(self) -> int:
        """Total number of changes."""
        return len(self.ops)

    @property
    def failed_kinds(self) -> set[str]:
        return {e.kind for e in self.errors if e.kind}

    def ops_for_kind(self, kind: str) -> list[ChangeOp]:
        return [op for op in self.ops if op.kind == kind]


# --- Validation Results ---

@dataclass
class ValidationResult:
    """Result of generic entity validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# --- Command Plan ---

@dataclass(frozen=True)
class PlannedCommand:
    """One device line and the index of the operation that produced it."""
    line: str
    op_index: int


@dataclass
class CommandPlan:
    """Ordered lines to send for a list of operations."""
    ops: list[ChangeOp] = field(default_factory=list)
    commands: list[PlannedCommand] = field(default_factory=list)
    save_config: bool = False

    @property
    def lines(self) -> list[str]:
        return [c.line for c in self.commands]

    @property
    def total_commands(self) -> int:
        """Total number of commands."""
        return len(self.commands)

    def ops_completed(self, completed_lines: int) -> tuple[list[ChangeOp], list[ChangeOp]]:
        """Split ops into (fully executed, not fully executed) after N lines.

        An operation counts as executed only when all of its lines ran.
        """
        last_line: dict[int, int] = {}
        for position, command in enumerate(self.commands):
            last_line[command.op_index] = position

        executed = []
        pending = []
        for index, op in enumerate(self.ops):
            if index not in last_line or last_line[index] < completed_lines:
                executed.append(op)
            else:
                pending.append(op)
        return executed, pending


# --- Execution Results ---

@dataclass
class ExecuteOptions:
    """Options for applying a command plan."""
    dry_run: bool = False
    batch: bool = True
    timeout: float = 30.0
    max_attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 10.0
    save_config: bool = True
    cancel_event: Optional[asyncio.Event] = None
    audit_context: str = ""
    user: Optional[str] = None


@dataclass
class ExecuteResult:
    """Result of applying a command plan."""
    success: bool = False
    dry_run: bool = False
    commands_executed: list[str] = field(default_factory=list)
    executed_ops: list[ChangeOp] = field(default_factory=list)
    pending_ops: list[ChangeOp] = field(default_factory=list)
    error: Optional[ReconcileError] = None
    saved: bool = False
    attempts: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "commands_executed": self.commands_executed,
            "executed_ops": [op.describe() for op in self.executed_ops],
            "pending_ops": [op.describe() for op in self.pending_ops],
            "error": self.error.to_dict() if self.error else None,
            "saved": self.saved,
            "attempts": self.attempts,
        }


@dataclass
class ConvergeResult:
    """Result of a converge call: applied ops, drift and per-kind errors."""
    applied_ops: list[ChangeOp] = field(default_factory=list)
    drift: DriftReport = field(default_factory=DriftReport)
    errors: list[ReconcileError] = field(default_factory=list)
    dry_run: bool = False
    commands: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def error(self) -> Optional[ReconcileError]:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "applied_ops": [op.describe() for op in self.applied_ops],
            "commands": self.commands,
            "drift": self.drift.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
        }
