"""Pre-flight validation for desired entities.

Catches structural errors before any device communication. Only the
invariants every kind shares are checked here; semantic rules of a feature
area belong to whoever builds the desired state.
"""
import ipaddress
from collections.abc import Mapping
from typing import Any, Optional, Union

from .grammar import FieldSpec, FieldType, Grammar, KindSpec
from .schema import Entity, ValidationResult

# Desired entity counts above this produce a warning
LARGE_CHANGE_THRESHOLD = 50

# Mapping entry holding an explicit stable key rather than a field
EXPLICIT_KEY = "key"


class ConfigValidator:
    """Validate desired entities against their kind's grammar."""

    def __init__(self, grammar: Grammar, large_change_threshold: int = LARGE_CHANGE_THRESHOLD):
        """
        Initialize validator.

        Args:
            grammar: Kinds the engine knows
            large_change_threshold: Entity count that triggers a warning
        """
        self.grammar = grammar
        self.large_change_threshold = large_change_threshold

    def validate(self, kind: str, entities: list[Union[Entity, Mapping[str, Any]]]) -> ValidationResult:
        """
        Validate the desired entities of one kind.

        Performs pre-flight checks:
        - Kind is modeled
        - Field names are declared by the kind
        - Required fields are present (the auto-numbered order field is exempt)
        - Values match the declared field type

        Args:
            kind: Entity kind
            entities: Desired entities or plain field mappings

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        try:
            spec = self.grammar.kind(kind)
        except ValueError as e:
            return ValidationResult(valid=False, errors=[str(e)])

        for position, item in enumerate(entities, start=1):
            fields = self._fields_of(spec, item, position, errors)
            if fields is None:
                continue
            label = f"{kind}[{position}]"
            self._check_names(spec, fields, label, errors)
            self._check_required(spec, fields, label, errors)
            self._check_types(spec, fields, label, errors)

        self._check_change_size(kind, entities, warnings)

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def _fields_of(
        self,
        spec: KindSpec,
        item: Union[Entity, Mapping[str, Any]],
        position: int,
        errors: list[str],
    ) -> Optional[Mapping[str, Any]]:
        if isinstance(item, Entity):
            if item.kind != spec.name:
                errors.append(f"{spec.name}[{position}]: entity of kind {item.kind} in {spec.name} list")
                return None
            return item.fields
        if isinstance(item, Mapping):
            return item
        errors.append(f"{spec.name}[{position}]: expected a mapping, got {type(item).__name__}")
        return None

    def _check_names(self, spec: KindSpec, fields: Mapping[str, Any], label: str, errors: list[str]) -> None:
        """Reject fields the kind does not declare."""
        for name in fields:
            if name == EXPLICIT_KEY:
                continue
            if spec.field(name) is None:
                errors.append(f"{label}: unknown field '{name}'")

    def _check_required(self, spec: KindSpec, fields: Mapping[str, Any], label: str, errors: list[str]) -> None:
        """Required and natural-key fields must be present."""
        for field_spec in spec.fields:
            if field_spec.name == spec.order_field:
                continue
            if not (field_spec.required or field_spec.natural_key):
                continue
            value = fields.get(field_spec.name)
            if value is None or value == "" or value == () or value == []:
                errors.append(f"{label}: missing required field '{field_spec.name}'")

    def _check_types(self, spec: KindSpec, fields: Mapping[str, Any], label: str, errors: list[str]) -> None:
        for name, value in fields.items():
            field_spec = spec.field(name)
            if field_spec is None or value is None:
                continue
            problem = _type_problem(field_spec, value)
            if problem:
                errors.append(f"{label}: field '{name}' {problem}")

    def _check_change_size(self, kind: str, entities: list, warnings: list[str]) -> None:
        """Warn about large change sets."""
        if len(entities) > self.large_change_threshold:
            warnings.append(
                f"Large change set ({len(entities)} {kind} entities) - consider staging"
            )


def _type_problem(field_spec: FieldSpec, value: Any) -> Optional[str]:
    """Describe why ``value`` does not fit the field type, or None."""
    kind = field_spec.type
    if kind == FieldType.STRING:
        if not isinstance(value, str):
            return f"must be a string, got {type(value).__name__}"
    elif kind == FieldType.INTEGER:
        if isinstance(value, bool) or not isinstance(value, int):
            return f"must be an integer, got {type(value).__name__}"
    elif kind == FieldType.BOOLEAN:
        if not isinstance(value, bool):
            return f"must be a boolean, got {type(value).__name__}"
    elif kind == FieldType.ADDRESS:
        if not isinstance(value, str):
            return f"must be an address string, got {type(value).__name__}"
        try:
            ipaddress.ip_address(value)
        except ValueError:
            try:
                ipaddress.ip_network(value, strict=False)
            except ValueError:
                return f"is not a valid address: {value!r}"
    elif kind == FieldType.LIST:
        if isinstance(value, (str, Mapping)) or not isinstance(value, (list, tuple)):
            return f"must be a list, got {type(value).__name__}"
        if any(isinstance(v, (Mapping, list, tuple)) for v in value):
            return "must be a list of scalars"
    elif kind == FieldType.ENTITIES:
        if isinstance(value, (str, Mapping)) or not isinstance(value, (list, tuple)):
            return f"must be a list of mappings, got {type(value).__name__}"
        if not all(isinstance(v, Mapping) for v in value):
            return "must be a list of mappings"
    return None
