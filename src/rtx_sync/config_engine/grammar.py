"""Declarative per-kind grammar descriptors.

A kind's grammar lists the line patterns the device prints for it, how each
pattern is rendered and removed, which fields form the natural key, and
whether updates are issued as targeted field commands or as a full
delete-then-recreate. The parser and the command builder are both driven by
the same descriptor, which keeps them inverse to each other.
"""
import hashlib
import json
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class FieldType(str, Enum):
    """Value type of an entity field."""
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ADDRESS = "address"
    LIST = "list"
    ENTITIES = "entities"


class FieldPolicy(str, Enum):
    """What happens to a field the desired entity leaves out."""
    AUTHORITATIVE = "authoritative"
    COMPUTED_IF_ABSENT = "computed_if_absent"


class IdentityMode(str, Enum):
    """How identities are resolved for a kind."""
    CONTENT = "content"
    ORDERED = "ordered"


class UpdateMode(str, Enum):
    """How an update is sent to the device."""
    REPLACE = "replace"
    PARTIAL = "partial"


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of one entity field."""
    name: str
    type: FieldType = FieldType.STRING
    natural_key: bool = False
    required: bool = False
    policy: FieldPolicy = FieldPolicy.AUTHORITATIVE
    default: Any = None


Renderer = Callable[[Mapping[str, Any]], Optional[str]]


@dataclass(frozen=True, eq=False)
class LinePattern:
    """One line shape of a kind.

    ``regex`` uses named groups that are the field names they fill. The
    ``render`` callable is the inverse of the regex and returns ``None`` when
    the record has nothing to print for this line; ``remove`` returns the
    matching removal line. A ``collect`` pattern contributes one item per
    matching line to the named list field, and is rendered once per item.
    """
    name: str
    regex: str
    render: Renderer
    remove: Optional[Renderer] = None
    fields: tuple[str, ...] = ()
    collect: Optional[str] = None
    convert: Mapping[str, Callable[[str], Any]] = field(default_factory=dict)
    primary: bool = False
    continuable: bool = False
    compiled: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "compiled", re.compile(self.regex))

    def match(self, text: str) -> Optional[re.Match]:
        return self.compiled.fullmatch(text)

    def extract(self, match: re.Match) -> dict[str, Any]:
        """Convert the captured groups into field values.

        Raises:
            ValueError: If a converter rejects a captured token
        """
        values = {}
        for name, raw in match.groupdict().items():
            if raw is None:
                continue
            converter = self.convert.get(name)
            values[name] = converter(raw) if converter else raw
        return values


@dataclass(frozen=True, eq=False)
class KindSpec:
    """Grammar and reconciliation semantics of one entity kind."""
    name: str
    fields: tuple[FieldSpec, ...]
    patterns: tuple[LinePattern, ...]
    record_key: tuple[str, ...] = ()
    identity: IdentityMode = IdentityMode.CONTENT
    update_mode: UpdateMode = UpdateMode.REPLACE
    order_field: Optional[str] = None
    sequence_start: int = 1
    sequence_step: int = 1
    derive: Optional[Callable[[dict[str, Any]], dict[str, Any]]] = None
    show_command: str = "show config"
    description: str = ""

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def natural_key_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.natural_key]

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    def field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def natural_key(self, fields: Mapping[str, Any]) -> list[Any]:
        """Values of the natural-key fields in declaration order."""
        return [_plain(fields.get(name)) for name in self.natural_key_fields]

    def fingerprint(self, fields: Mapping[str, Any]) -> str:
        """Content identity: sha256 over the natural-key values."""
        payload = json.dumps(
            [self.name, self.natural_key(fields)],
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:16]

    def canonical(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Fields in declaration order, with default-valued fields dropped.

        Unknown field names are kept at the end so the validator can report
        them.
        """
        result = {}
        for spec in self.fields:
            value = fields.get(spec.name)
            if value is None:
                continue
            if spec.default is not None and _plain(value) == _plain(spec.default):
                continue
            result[spec.name] = value
        for name, value in fields.items():
            if name not in result and self.field(name) is None and value is not None:
                result[name] = value
        return result

    def with_defaults(self, overrides: Mapping[str, Any]) -> "KindSpec":
        """Copy of this kind with some field defaults replaced.

        Raises:
            ValueError: If an override names a field the kind does not have
        """
        unknown = set(overrides) - set(self.field_names)
        if unknown:
            raise ValueError(
                f"Unknown field(s) for {self.name}: {', '.join(sorted(unknown))}"
            )
        fields = tuple(
            replace(spec, default=overrides[spec.name]) if spec.name in overrides else spec
            for spec in self.fields
        )
        return replace(self, fields=fields)


def _plain(value: Any) -> Any:
    """Normalize tuples to lists so values compare and serialize the same way."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class Capabilities:
    """Per-kind default overrides for a hardware variant.

    Supplied by the caller; the engine never guesses which variant a device
    is. Example::

        Capabilities(model="RTX830", defaults={"ipsec_tunnel": {"hash": "sha"}})
    """
    defaults: dict[str, dict[str, Any]] = field(default_factory=dict)
    model: Optional[str] = None

    def apply(self, spec: KindSpec) -> KindSpec:
        overrides = self.defaults.get(spec.name)
        if not overrides:
            return spec
        return spec.with_defaults(overrides)


class Grammar:
    """Ordered collection of kind specs."""

    def __init__(self, kinds: Iterable[KindSpec]):
        self._kinds: dict[str, KindSpec] = {}
        for spec in kinds:
            if spec.name in self._kinds:
                raise ValueError(f"Duplicate kind: {spec.name}")
            self._kinds[spec.name] = spec

    def kind(self, name: str) -> KindSpec:
        try:
            return self._kinds[name]
        except KeyError:
            raise ValueError(f"Unknown kind: {name}") from None

    @property
    def names(self) -> list[str]:
        return list(self._kinds)

    def subset(self, names: Iterable[str]) -> "Grammar":
        wanted = set(names)
        return Grammar(spec for spec in self if spec.name in wanted)

    def with_capabilities(self, capabilities: Optional[Capabilities]) -> "Grammar":
        if capabilities is None:
            return self
        return Grammar(capabilities.apply(spec) for spec in self)

    def __iter__(self) -> Iterator[KindSpec]:
        return iter(self._kinds.values())

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)
