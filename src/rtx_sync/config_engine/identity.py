"""Identity resolution for entities of one kind.

The device has no object identifiers, so identity is derived from content:
an explicit key wins, otherwise the kind's fingerprint over its natural-key
fields. Ordered kinds append an occurrence index (``<fingerprint>#<n>``) so
repeated content stays distinguishable. An entity takes a known identity
when it matches a reference entity on its order slot and content, on its
content alone (a moved rule), or on its slot alone (a rule edited in place).
Anything else gets an occurrence index no reference uses.
"""
import json
import logging
from collections import defaultdict
from typing import Any, Optional

from .errors import IdentityConflictError
from .grammar import IdentityMode, KindSpec
from .schema import Entity

logger = logging.getLogger(__name__)


def _occurrence(identity: Optional[str]) -> Optional[int]:
    if not identity or "#" not in identity:
        return None
    try:
        return int(identity.rsplit("#", 1)[1])
    except ValueError:
        return None


def _sort_key(spec: KindSpec, entity: Entity) -> tuple:
    order = entity.get(spec.order_field) if spec.order_field else None
    return (
        order is None,
        order if isinstance(order, int) else 0,
        json.dumps(entity.to_dict()["fields"], sort_keys=True, default=str),
    )


def _slot(spec: KindSpec, entity: Entity) -> Any:
    return entity.get(spec.order_field) if spec.order_field else None


def _content(spec: KindSpec, entity: Entity) -> dict[str, Any]:
    return {k: v for k, v in entity.fields.items() if k != spec.order_field}


def resolve_identities(
    spec: KindSpec,
    entities: list[Entity],
    reference: Optional[list[Entity]] = None,
) -> list[Entity]:
    """
    Return the entities with ``identity`` filled in, in input order.

    Args:
        spec: Kind the entities belong to
        entities: Entities to resolve (already-set identities are recomputed
            unless they come from an explicit key)
        reference: Resolved entities to match against (the previous
            snapshot, plus the desired entities when resolving device state),
            used by ordered kinds to keep occurrence indexes stable

    Returns:
        New Entity objects carrying their resolved identity
    """
    if spec.identity == IdentityMode.CONTENT:
        return [e.with_identity(e.key or spec.fingerprint(e.fields)) for e in entities]

    # Ordered kinds: group repeated content by fingerprint
    groups: dict[str, list[int]] = defaultdict(list)
    resolved: list[Optional[Entity]] = [None] * len(entities)
    for index, entity in enumerate(entities):
        if entity.key:
            resolved[index] = entity.with_identity(entity.key)
        else:
            groups[spec.fingerprint(entity.fields)].append(index)

    references: dict[str, list[Entity]] = defaultdict(list)
    for ref in reference or []:
        if ref.identity and not ref.key and "#" in ref.identity:
            references[ref.identity.rsplit("#", 1)[0]].append(ref)

    for fingerprint, members in groups.items():
        refs = references.get(fingerprint, [])
        # Occurrence indexes of the reference stay reserved even when unclaimed
        reserved = {_occurrence(ref.identity) for ref in refs}
        claimed: set[str] = set()

        # Unchanged rules first, then moved rules (renumbered in place), then
        # rules edited in their slot. Only the order field is positional.
        pending = list(members)
        for same in (
            lambda e, ref: _slot(spec, e) == _slot(spec, ref) and _content(spec, e) == _content(spec, ref),
            lambda e, ref: _content(spec, e) == _content(spec, ref),
            lambda e, ref: _slot(spec, e) is not None and _slot(spec, e) == _slot(spec, ref),
        ):
            unmatched = []
            for index in pending:
                identity = next((
                    ref.identity for ref in refs
                    if ref.identity not in claimed and same(entities[index], ref)
                ), None)
                if identity is None:
                    unmatched.append(index)
                    continue
                resolved[index] = entities[index].with_identity(identity)
                claimed.add(identity)
            pending = unmatched

        # Anything else is new and takes a free index in natural-key order
        pending.sort(key=lambda i: _sort_key(spec, entities[i]))
        next_index = 0
        for index in pending:
            while next_index in reserved:
                next_index += 1
            resolved[index] = entities[index].with_identity(f"{fingerprint}#{next_index}")
            reserved.add(next_index)

    return [entity for entity in resolved if entity is not None]


def assign_sequence(spec: KindSpec, entities: list[Entity]) -> list[Entity]:
    """
    Fill in the order field of entities that lack one.

    The n-th entity gets ``sequence_start + n * sequence_step``, so list
    position decides evaluation order. Entities that already carry a value
    keep it.
    """
    if spec.identity != IdentityMode.ORDERED or not spec.order_field:
        return list(entities)

    result = []
    for position, entity in enumerate(entities):
        if entity.get(spec.order_field) is None:
            number = spec.sequence_start + position * spec.sequence_step
            fields = dict(entity.fields)
            fields[spec.order_field] = number
            entity = entity.with_fields(spec.canonical(fields))
        result.append(entity)
    return result


def find_conflicts(spec: KindSpec, entities: list[Entity]) -> list[IdentityConflictError]:
    """Report desired entities sharing an identity (or an order slot)."""
    conflicts = []

    seen: dict[str, Entity] = {}
    for entity in entities:
        identity = entity.identity
        if identity is None:
            continue
        if identity in seen and not seen[identity].same_fields(entity):
            conflicts.append(IdentityConflictError(
                f"Duplicate identity in desired state: {seen[identity].label} and {entity.label}",
                kind=spec.name,
                identity=identity,
            ))
        elif identity in seen:
            conflicts.append(IdentityConflictError(
                "Entity listed twice in desired state",
                kind=spec.name,
                identity=identity,
            ))
        else:
            seen[identity] = entity

    if spec.order_field:
        slots: dict[object, Entity] = {}
        for entity in entities:
            slot = entity.get(spec.order_field)
            if slot is None:
                continue
            if slot in slots:
                conflicts.append(IdentityConflictError(
                    f"{spec.order_field}={slot} used by {slots[slot].label} and {entity.label}",
                    kind=spec.name,
                    identity=entity.identity,
                ))
            else:
                slots[slot] = entity

    for conflict in conflicts:
        logger.warning(f"Identity conflict: {conflict}")
    return conflicts
