"""Main Config Engine - orchestrates read and converge for one device.

Provides a single entry point for:
1. Reading actual state (show command + line parser)
2. Validating desired entities
3. Reconciling desired, previous and actual state
4. Applying the change operations batch by batch
5. Recording the next snapshot
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any, Optional, Union

from ..devices.base import RemoteShell
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed_section
from .errors import ReconcileError
from .executor import ConfigExecutor
from .generator import CommandBuilder, summarize_ops
from .grammar import Capabilities, Grammar
from .parser import LineParser
from .reconciler import Reconciler
from .schema import ConvergeResult, Entity, ExecuteOptions, Origin, ReconcileResult
from .validator import EXPLICIT_KEY, ConfigValidator

logger = logging.getLogger(__name__)

DesiredItems = Iterable[Union[Entity, Mapping[str, Any]]]


class ConfigEngine:
    """
    Config Engine for one device.

    Usage:
        engine = ConfigEngine(shell, "rtx-edge")
        routes = await engine.read("static_route")
        result = await engine.converge("ip_filter", [
            {"action": "pass", "source": "*", "destination": "*", "protocol": "icmp"},
        ], dry_run=True)
    """

    def __init__(
        self,
        shell: RemoteShell,
        device_id: Optional[str] = None,
        grammar: Optional[Grammar] = None,
        store=None,
        dependencies: Optional[Mapping[str, Iterable[str]]] = None,
        capabilities: Optional[Capabilities] = None,
        options: Optional[ExecuteOptions] = None,
        tracker: Optional[ChangeTracker] = None,
    ):
        """
        Initialize the Config Engine.

        Args:
            shell: Session to the device
            device_id: Snapshot and audit key (default: ``shell.device_id``)
            grammar: Modeled kinds (default: every kind in ``rtx_sync.kinds``)
            store: Snapshot store (default: ``SnapshotStore()`` in ~/.rtx-sync)
            dependencies: kind -> kinds it references
            capabilities: Per-kind default overrides for the hardware variant
            options: Execution options used by converge calls
            tracker: Audit tracker (default: one for ``device_id``)
        """
        # Both packages import config_engine, so they are loaded late
        from ..config_store import SnapshotStore
        from ..kinds import DEFAULT_DEPENDENCIES, default_grammar

        self.shell = shell
        self.device_id = device_id or shell.device_id
        self.store = store if store is not None else SnapshotStore()
        self.options = options or ExecuteOptions()

        self.reconciler = Reconciler(
            grammar or default_grammar(),
            dependencies=DEFAULT_DEPENDENCIES if dependencies is None else dependencies,
            capabilities=capabilities,
        )
        self.grammar = self.reconciler.grammar
        self.parser = LineParser(self.grammar)
        self.builder = CommandBuilder(self.grammar)
        self.validator = ConfigValidator(self.grammar)
        self.executor = ConfigExecutor(shell, self.builder, tracker or ChangeTracker(self.device_id))

    async def read(self, kind: str) -> list[Entity]:
        """
        Read the current entities of one kind from the device.

        Parse problems are logged, not raised.

        Raises:
            ValueError: If the kind is not modeled
        """
        self.grammar.kind(kind)
        async with timed_section("read", device_id=self.device_id, kind=kind):
            actual = await self._read_actual([kind])
        return actual[kind]

    async def _read_actual(self, kinds: list[str]) -> dict[str, list[Entity]]:
        """Issue each distinct show command once and parse every kind it covers."""
        by_command: dict[str, list[str]] = {}
        for kind in kinds:
            by_command.setdefault(self.grammar.kind(kind).show_command, []).append(kind)

        actual: dict[str, list[Entity]] = {kind: [] for kind in kinds}
        for command, command_kinds in by_command.items():
            output = await self.shell.show(command, timeout=self.options.timeout)
            parsed = LineParser(self.grammar.subset(command_kinds)).parse(output)
            for error in parsed.errors:
                logger.warning(f"{self.device_id}: {error}")
            for entity in parsed.entities:
                actual[entity.kind].append(entity)
            logger.debug(
                f"Parsed {len(parsed.entities)} entities from '{command}' on {self.device_id}"
            )
        return actual

    async def converge(self, kind: str, desired: DesiredItems, dry_run: bool = False) -> ConvergeResult:
        """
        Bring one kind on the device to the desired state.

        Args:
            kind: Entity kind
            desired: Desired entities or plain field mappings
            dry_run: If True, preview changes without applying

        Returns:
            ConvergeResult with applied ops, drift and per-kind errors

        Raises:
            TransientIOError: When retries are exhausted
        """
        return await self.converge_many({kind: desired}, dry_run=dry_run)

    async def converge_many(
        self,
        desired_by_kind: Mapping[str, DesiredItems],
        dry_run: bool = False,
    ) -> ConvergeResult:
        """
        Converge several kinds in one call.

        Kinds that reference each other are applied as one batch; unrelated
        kinds get a batch each, so a refused line only aborts its own batch.
        The device configuration is persisted once at the end when any batch
        succeeded.

        Raises:
            TransientIOError: When retries are exhausted
        """
        converge = ConvergeResult(dry_run=dry_run)
        async with timed_section("converge", device_id=self.device_id, kinds=len(desired_by_kind)):
            result, kinds = await self._reconcile(desired_by_kind, converge)
            converge.drift = result.drift
            converge.errors.extend(result.errors)

            failed = result.failed_kinds
            applied_kinds: list[str] = []
            any_applied = False
            options = replace(self.options, dry_run=dry_run, save_config=False)

            try:
                for component in self.reconciler.component_order(k for k in kinds if k not in failed):
                    ops = [op for op in result.ops if op.kind in component]
                    if not ops:
                        applied_kinds.extend(component)
                        continue

                    logger.info(
                        f"{'DRY RUN: ' if dry_run else ''}Applying {len(ops)} op(s) for "
                        f"{', '.join(component)} on {self.device_id}"
                    )
                    executed = await self.executor.apply(ops, options)
                    converge.commands.extend(executed.commands_executed)
                    if dry_run:
                        converge.applied_ops.extend(ops)
                    elif executed.success:
                        converge.applied_ops.extend(ops)
                        applied_kinds.extend(component)
                        any_applied = True
                    else:
                        converge.applied_ops.extend(executed.executed_ops)
                        converge.errors.append(executed.error)
                        any_applied = any_applied or bool(executed.executed_ops)
            finally:
                if not dry_run:
                    self._record(result, applied_kinds)

            if not dry_run and any_applied and self.options.save_config:
                saved = await self.executor.save(options)
                if saved.error is not None:
                    converge.errors.append(saved.error)

        if converge.errors:
            logger.warning(f"Converge on {self.device_id} finished with {len(converge.errors)} error(s)")
        return converge

    async def preview(self, desired_by_kind: Mapping[str, DesiredItems]) -> str:
        """
        Preview changes without applying.

        Returns human-readable summary with the command lines.
        """
        converge = ConvergeResult(dry_run=True)
        result, _ = await self._reconcile(desired_by_kind, converge)
        summary = summarize_ops(result, self.builder)
        for error in converge.errors:
            summary += f"\nError: {error}"
        return summary

    async def _reconcile(
        self,
        desired_by_kind: Mapping[str, DesiredItems],
        converge: ConvergeResult,
    ) -> tuple[ReconcileResult, list[str]]:
        """Validate, read actual, load previous and reconcile the valid kinds."""
        kinds: list[str] = []
        desired: list[Entity] = []
        for kind, items in desired_by_kind.items():
            items = list(items)
            validation = self.validator.validate(kind, items)
            for warning in validation.warnings:
                logger.warning(f"{self.device_id}: {warning}")
            if not validation.valid:
                logger.error(f"Validation failed for {kind}: {'; '.join(validation.errors)}")
                converge.errors.append(ReconcileError(
                    f"Validation failed: {'; '.join(validation.errors)}", kind=kind,
                ))
                continue
            kinds.append(kind)
            desired.extend(_as_entity(kind, item) for item in items)

        if not kinds:
            return ReconcileResult(), kinds

        actual = await self._read_actual(kinds)
        previous = []
        for kind in kinds:
            previous.extend(self.store.load(self.device_id, kind))

        result = self.reconciler.reconcile(
            desired,
            previous=previous,
            actual=[e for kind in kinds for e in actual[kind]],
        )
        return result, kinds

    def _record(self, result: ReconcileResult, kinds: list[str]) -> None:
        """Save the next snapshot of kinds whose batch succeeded."""
        for kind in kinds:
            entities = result.next_state.get(kind)
            if entities is None:
                continue
            previous = [e.to_dict() for e in self.store.load(self.device_id, kind)]
            if previous == [e.to_dict() for e in entities]:
                continue
            self.store.save(self.device_id, kind, entities)


def _as_entity(kind: str, item: Union[Entity, Mapping[str, Any]]) -> Entity:
    if isinstance(item, Entity):
        return item
    fields = dict(item)
    key = fields.pop(EXPLICIT_KEY, None)
    return Entity(kind=kind, fields=fields, origin=Origin.DESIRED, key=key)
