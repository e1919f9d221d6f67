"""Three-way reconciler.

Computes the ordered change operations that take the device from its
actual state to the desired state, using the previously applied snapshot
to tell managed entities apart from unrelated device configuration.
"""
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional

from .grammar import Capabilities, FieldPolicy, Grammar, KindSpec
from .identity import assign_sequence, find_conflicts, resolve_identities
from .schema import (
    ChangeOp,
    DriftItem,
    DriftReport,
    Entity,
    OpType,
    Origin,
    ReconcileResult,
)

logger = logging.getLogger(__name__)


def dependency_order(kinds: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> list[str]:
    """
    Sort kinds so every kind comes after the kinds it depends on.

    Ties keep the input order.

    Raises:
        ValueError: If the dependency table contains a cycle
    """
    remaining = list(kinds)
    ordered = []
    while remaining:
        ready = [
            kind for kind in remaining
            if not any(dep in remaining for dep in dependencies.get(kind, ()))
        ]
        if not ready:
            raise ValueError(f"Dependency cycle among kinds: {', '.join(remaining)}")
        ordered.append(ready[0])
        remaining.remove(ready[0])
    return ordered


@dataclass
class _KindPlan:
    creates: list[ChangeOp] = field(default_factory=list)
    updates: list[ChangeOp] = field(default_factory=list)
    deletes: list[ChangeOp] = field(default_factory=list)


class Reconciler:
    """Compare desired, previous and actual entities and emit change operations."""

    def __init__(
        self,
        grammar: Grammar,
        dependencies: Optional[Mapping[str, Iterable[str]]] = None,
        capabilities: Optional[Capabilities] = None,
    ):
        """
        Initialize reconciler.

        Args:
            grammar: Kinds this reconciler understands
            dependencies: kind -> kinds it references. A kind is created
                after and deleted before everything it references.
            capabilities: Per-kind default overrides for the hardware variant

        Raises:
            ValueError: If the dependency table contains a cycle
        """
        self.grammar = grammar.with_capabilities(capabilities)
        self.dependencies = {k: tuple(v) for k, v in (dependencies or {}).items()}
        self.order = dependency_order(self.grammar.names, self.dependencies)

    def reconcile(
        self,
        desired: list[Entity],
        previous: Optional[list[Entity]] = None,
        actual: Optional[list[Entity]] = None,
    ) -> ReconcileResult:
        """
        Compute change operations.

        Args:
            desired: Entities the caller wants, any kinds
            previous: Last applied snapshot; None means nothing was applied yet
            actual: Entities parsed from the device; None means the device
                was not read and the previous snapshot stands in for it

        Returns:
            ReconcileResult with ordered ops, drift, per-kind errors and the
            entities to record as the next snapshot
        """
        desired_by = _partition(desired)
        previous_by = _partition(previous or [])
        actual_by = _partition(actual) if actual is not None else None

        kinds = set(desired_by) | set(previous_by) | set(actual_by or {})
        for kind in kinds:
            self.grammar.kind(kind)

        result = ReconcileResult()
        plans: dict[str, _KindPlan] = {}

        for kind in self.order:
            if kind not in kinds:
                continue
            plans[kind] = self._reconcile_kind(
                self.grammar.kind(kind),
                desired_by.get(kind, []),
                previous_by.get(kind, []),
                actual_by.get(kind, []) if actual_by is not None else None,
                result,
            )

        # Deletes first, dependents before what they reference
        for kind in reversed(self.order):
            if kind in plans:
                result.ops.extend(plans[kind].deletes)
        for kind in self.order:
            if kind in plans:
                result.ops.extend(plans[kind].creates)
                result.ops.extend(plans[kind].updates)

        logger.info(
            f"Reconciled {len(plans)} kind(s): {result.total_changes} op(s), "
            f"{result.drift.drift_count} drift item(s), {len(result.errors)} error(s)"
        )
        return result

    def _reconcile_kind(
        self,
        spec: KindSpec,
        desired: list[Entity],
        previous: list[Entity],
        actual: Optional[list[Entity]],
        result: ReconcileResult,
    ) -> _KindPlan:
        plan = _KindPlan()

        previous = self._prepare(spec, previous, reference=None, keep_identity=True)
        desired = self._prepare(spec, desired, reference=previous)

        conflicts = find_conflicts(spec, desired)
        if conflicts:
            result.errors.extend(conflicts)
            result.next_state[spec.name] = previous
            return plan

        previous_map = {e.identity: e for e in previous}
        actual_map = None
        if actual is not None:
            # Desired entities are a reference too, so an unmanaged rule never
            # takes a managed identity on a first run
            actual = self._prepare(spec, actual, reference=previous + desired)
            actual_map = {e.identity: e for e in actual}

        next_state = []
        desired_ids = set()
        for entity in desired:
            identity = entity.identity
            desired_ids.add(identity)
            prev = previous_map.get(identity)
            current = actual_map.get(identity) if actual_map is not None else prev

            entity = self._merge(spec, entity, current if current is not None else prev)
            next_state.append(entity.with_origin(Origin.PREVIOUS))

            if current is None:
                plan.creates.append(ChangeOp(spec.name, OpType.CREATE, identity, after=entity))
            elif not current.same_fields(entity):
                plan.updates.append(ChangeOp(
                    spec.name,
                    OpType.UPDATE,
                    identity,
                    before=current,
                    after=entity,
                    changed_fields=_changed_fields(spec, current, entity),
                ))

        for prev in previous:
            if prev.identity in desired_ids:
                continue
            if actual_map is None:
                plan.deletes.append(ChangeOp(spec.name, OpType.DELETE, prev.identity, before=prev))
            elif prev.identity in actual_map:
                plan.deletes.append(ChangeOp(
                    spec.name, OpType.DELETE, prev.identity, before=actual_map[prev.identity],
                ))
            else:
                logger.debug(f"{spec.name} {prev.identity} already absent from device")

        if actual is not None:
            for entity in actual:
                if entity.identity in desired_ids or entity.identity in previous_map:
                    continue
                result.drift.items.append(DriftItem(
                    kind=spec.name,
                    identity=entity.identity,
                    entity=entity,
                    details="present on device but not managed",
                ))

        result.next_state[spec.name] = next_state
        return plan

    def _prepare(
        self,
        spec: KindSpec,
        entities: list[Entity],
        reference: Optional[list[Entity]],
        keep_identity: bool = False,
    ) -> list[Entity]:
        """Canonicalize fields, fill order numbers and resolve identities."""
        prepared = [e.with_fields(spec.canonical(e.fields)) for e in entities]
        prepared = assign_sequence(spec, prepared)
        if keep_identity and all(e.identity for e in prepared):
            return prepared
        return resolve_identities(spec, prepared, reference=reference)

    def _merge(self, spec: KindSpec, entity: Entity, base: Optional[Entity]) -> Entity:
        """Copy computed-if-absent fields the desired entity leaves out.

        Authoritative fields left out stay absent, which is the kind default.
        """
        if base is None:
            return entity
        fields = dict(entity.fields)
        for field_spec in spec.fields:
            if field_spec.name in fields:
                continue
            if field_spec.policy == FieldPolicy.COMPUTED_IF_ABSENT and base.get(field_spec.name) is not None:
                fields[field_spec.name] = base.get(field_spec.name)
        return entity.with_fields(spec.canonical(fields))

    def component_order(self, kinds: Iterable[str]) -> list[list[str]]:
        """
        Group kinds into dependency-connected components.

        Each component is in dependency order, and components are ordered by
        their first kind. Kinds in different components never reference each
        other, so they can be applied as independent batches.
        """
        wanted = set(kinds)
        ordered = [kind for kind in self.order if kind in wanted]
        parent = {kind: kind for kind in ordered}

        def find(kind: str) -> str:
            while parent[kind] != kind:
                parent[kind] = parent[parent[kind]]
                kind = parent[kind]
            return kind

        for kind in ordered:
            for dep in self.dependencies.get(kind, ()):
                if dep in parent:
                    parent[find(kind)] = find(dep)

        groups: dict[str, list[str]] = {}
        for kind in ordered:
            groups.setdefault(find(kind), []).append(kind)
        return list(groups.values())


def _partition(entities: Iterable[Entity]) -> dict[str, list[Entity]]:
    by_kind: dict[str, list[Entity]] = defaultdict(list)
    for entity in entities:
        by_kind[entity.kind].append(entity)
    return dict(by_kind)


def _changed_fields(spec: KindSpec, before: Entity, after: Entity) -> tuple[str, ...]:
    names = spec.field_names + [n for n in after.fields if n not in spec.field_names]
    return tuple(n for n in names if before.get(n) != after.get(n))
