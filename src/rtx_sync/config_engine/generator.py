"""Command builder: the inverse of the line parser.

Generates the exact configuration lines for create, update and delete
operations from a kind's grammar, and turns an ordered operation list into
a command plan.
"""
from typing import Any, Mapping, Optional

from .grammar import Grammar, KindSpec, LinePattern, UpdateMode
from .schema import ChangeOp, CommandPlan, Entity, OpType, PlannedCommand, ReconcileResult


class CommandBuilder:
    """Generate device command lines from entities."""

    def __init__(self, grammar: Grammar):
        self.grammar = grammar

    def build(
        self,
        kind: str,
        op: OpType,
        before: Optional[Entity] = None,
        after: Optional[Entity] = None,
    ) -> list[str]:
        """
        Generate the lines for one operation.

        Args:
            kind: Entity kind
            op: create, update or delete
            before: Entity as it is on the device (update, delete)
            after: Entity as it should be (create, update)

        Returns:
            Command lines in the order they must be sent

        Raises:
            ValueError: If the entity needed for ``op`` is missing
        """
        spec = self.grammar.kind(kind)
        op = OpType(op)

        if op == OpType.CREATE:
            if after is None:
                raise ValueError(f"create {kind} needs an 'after' entity")
            return self._create(spec, after.fields)

        if op == OpType.DELETE:
            if before is None:
                raise ValueError(f"delete {kind} needs a 'before' entity")
            return self._delete(spec, before.fields)

        if before is None or after is None:
            raise ValueError(f"update {kind} needs 'before' and 'after' entities")
        if (
            spec.update_mode == UpdateMode.REPLACE
            or spec.natural_key(before.fields) != spec.natural_key(after.fields)
        ):
            return self._delete(spec, before.fields) + self._create(spec, after.fields)
        return self._partial_update(spec, before.fields, after.fields)

    def _create(self, spec: KindSpec, fields: Mapping[str, Any]) -> list[str]:
        lines = []
        for pattern in spec.patterns:
            if pattern.collect:
                for item in fields.get(pattern.collect, ()):
                    line = pattern.render(_item_fields(fields, item))
                    if line:
                        lines.append(line)
            else:
                line = pattern.render(fields)
                if line:
                    lines.append(line)
        return lines

    def _delete(self, spec: KindSpec, fields: Mapping[str, Any]) -> list[str]:
        lines = []
        for pattern in reversed(spec.patterns):
            if pattern.remove is None:
                continue
            if pattern.collect:
                for item in reversed(fields.get(pattern.collect, ())):
                    lines.append(pattern.remove(_item_fields(fields, item)))
            elif pattern.render(fields):
                lines.append(pattern.remove(fields))
        return lines

    def _partial_update(
        self,
        spec: KindSpec,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
    ) -> list[str]:
        lines = []
        for pattern in spec.patterns:
            if pattern.collect:
                lines.extend(self._update_collection(pattern, before, after))
                continue

            old_line = pattern.render(before)
            new_line = pattern.render(after)
            if old_line == new_line:
                continue
            if new_line:
                lines.append(new_line)
            elif pattern.remove is not None:
                lines.append(pattern.remove(before))
        return lines

    def _update_collection(
        self,
        pattern: LinePattern,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
    ) -> list[str]:
        old_items = list(before.get(pattern.collect, ()))
        new_items = list(after.get(pattern.collect, ()))

        lines = []
        # Removals first so re-used entry slots are free
        if pattern.remove is not None:
            for item in reversed(old_items):
                if item not in new_items:
                    lines.append(pattern.remove(_item_fields(before, item)))
        for item in new_items:
            if item not in old_items:
                lines.append(pattern.render(_item_fields(after, item)))
        return lines

    def plan(self, ops: list[ChangeOp], save_config: bool = False) -> CommandPlan:
        """
        Translate an ordered operation list into a command plan.

        Within one kind, the delete half of every replace-style update is
        moved ahead of that kind's creates, so an order slot or identity is
        freed before it is reassigned.
        """
        plan = CommandPlan(ops=list(ops), save_config=save_config)

        position = 0
        while position < len(ops):
            kind = ops[position].kind
            end = position
            while end < len(ops) and ops[end].kind == kind:
                end += 1
            plan.commands.extend(self._plan_kind_run(ops, position, end))
            position = end

        return plan

    def _plan_kind_run(self, ops: list[ChangeOp], start: int, end: int) -> list[PlannedCommand]:
        spec = self.grammar.kind(ops[start].kind)
        freed: list[PlannedCommand] = []
        rest: list[PlannedCommand] = []

        for index in range(start, end):
            op = ops[index]
            replace_update = op.op == OpType.UPDATE and (
                spec.update_mode == UpdateMode.REPLACE
                or spec.natural_key(op.before.fields) != spec.natural_key(op.after.fields)
            )
            if op.op == OpType.DELETE:
                freed.extend(PlannedCommand(line, index) for line in self._delete(spec, op.before.fields))
            elif replace_update:
                freed.extend(PlannedCommand(line, index) for line in self._delete(spec, op.before.fields))
                rest.extend(PlannedCommand(line, index) for line in self._create(spec, op.after.fields))
            else:
                rest.extend(
                    PlannedCommand(line, index)
                    for line in self.build(op.kind, op.op, op.before, op.after)
                )

        return freed + rest


def _item_fields(fields: Mapping[str, Any], item: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(fields)
    merged.update(item)
    return merged


def summarize_ops(result: ReconcileResult, builder: Optional[CommandBuilder] = None) -> str:
    """
    Generate human-readable summary of a reconciliation result.

    Args:
        result: Result to summarize
        builder: When given, the command lines are listed as well

    Returns:
        Multi-line summary string
    """
    if result.no_change and result.drift.is_empty and not result.errors:
        return "No changes required - device is already in desired state"

    lines = []
    if not result.no_change:
        lines.append(f"Planned changes: {result.total_changes}")

    current_kind = None
    for op in result.ops:
        if op.kind != current_kind:
            current_kind = op.kind
            lines.append(f"{op.kind}:")
        symbol = {"create": "+", "update": "~", "delete": "-"}[op.op.value]
        entity = op.after or op.before
        shown = list(entity.fields.items())[:3] if entity else []
        label = ", ".join(f"{k}={v}" for k, v in shown) or op.identity
        detail = f" ({', '.join(op.changed_fields)})" if op.changed_fields else ""
        lines.append(f"  {symbol} {label}{detail}")

    if builder is not None and result.ops:
        lines.append("Commands:")
        for command in builder.plan(result.ops).commands:
            lines.append(f"  {command.line}")

    if not result.drift.is_empty:
        lines.append(result.drift.summary())

    for error in result.errors:
        lines.append(f"Error: {error}")

    return "\n".join(lines)
