"""Config Engine - declarative reconciliation for RTX routers.

The Config Engine keeps modeled parts of a router's configuration in the
desired state:
- Send desired entities, not individual commands
- Parse the device's own configuration text back into entities
- Three-way reconcile against the previously applied snapshot
- Ordered, retried, persisted command batches

Usage:
    from rtx_sync.config_engine import ConfigEngine

    engine = ConfigEngine(shell, "rtx-edge")
    result = await engine.converge("static_route", [
        {"prefix": "10.0.0.0", "mask": 8, "gateways": [{"target": "192.168.1.254"}]},
    ], dry_run=True)
"""

from .engine import ConfigEngine
from .errors import (
    ReconcileError,
    ParseError,
    IdentityConflictError,
    CommandRejectedError,
    TransientIOError,
    PartialApplyError,
)
from .grammar import (
    Capabilities,
    FieldPolicy,
    FieldSpec,
    FieldType,
    Grammar,
    IdentityMode,
    KindSpec,
    LinePattern,
    UpdateMode,
)
from .schema import (
    Origin,
    Entity,
    OpType,
    ChangeOp,
    DriftItem,
    DriftReport,
    ReconcileResult,
    ValidationResult,
    PlannedCommand,
    CommandPlan,
    ExecuteOptions,
    ExecuteResult,
    ConvergeResult,
)
from .parser import LineParser, ParseResult, parse
from .validator import ConfigValidator
from .reconciler import Reconciler, dependency_order
from .generator import CommandBuilder, summarize_ops
from .executor import ConfigExecutor

__all__ = [
    # Main engine
    "ConfigEngine",
    # Errors
    "ReconcileError",
    "ParseError",
    "IdentityConflictError",
    "CommandRejectedError",
    "TransientIOError",
    "PartialApplyError",
    # Grammar
    "Capabilities",
    "FieldPolicy",
    "FieldSpec",
    "FieldType",
    "Grammar",
    "IdentityMode",
    "KindSpec",
    "LinePattern",
    "UpdateMode",
    # Schema classes
    "Origin",
    "Entity",
    "OpType",
    "ChangeOp",
    "DriftItem",
    "DriftReport",
    "ReconcileResult",
    "ValidationResult",
    "PlannedCommand",
    "CommandPlan",
    "ExecuteOptions",
    "ExecuteResult",
    "ConvergeResult",
    # Components (for advanced use)
    "LineParser",
    "ParseResult",
    "parse",
    "ConfigValidator",
    "Reconciler",
    "dependency_order",
    "CommandBuilder",
    "summarize_ops",
    "ConfigExecutor",
]
