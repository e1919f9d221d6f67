"""Line parser for captured device configuration text.

Turns the free-form output of show-style commands into typed entities for
every kind in a grammar. The device wraps long lines at a fixed terminal
width, so wrapped tails are merged back into their line before matching.
"""
import logging
from dataclasses import dataclass, field
from itertools import product
from typing import Any, Optional

from .errors import ParseError
from .grammar import Grammar, KindSpec, LinePattern
from .schema import Entity, Origin

logger = logging.getLogger(__name__)

# Longest run of unmatched lines tried as one wrapped record
MAX_WRAP_LINES = 4

# Physical lines at least this wide may have been cut by the terminal
WRAP_COLUMN = 78


@dataclass
class ParseResult:
    """Entities and collected problems from one parse."""
    entities: list[Entity] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def for_kind(self, kind: str) -> list[Entity]:
        return [e for e in self.entities if e.kind == kind]


@dataclass
class _Line:
    number: int
    text: str
    lead: bool
    trail: bool
    match: Optional[tuple[KindSpec, LinePattern, Any]] = None
    indent: int = 0
    width: int = 0

    @property
    def continuable(self) -> bool:
        return self.match is None or self.match[1].continuable


def _looks_wrapped(head: _Line, prev: _Line, cur: _Line) -> bool:
    """Whether ``cur`` can be the terminal-wrapped tail of ``prev``.

    Either ``prev`` ran up to the wrap column, or ``cur`` is indented past
    the record's first line, or it starts like a cut-off number list or
    option value.
    """
    if prev.width >= WRAP_COLUMN or cur.indent > head.indent:
        return True
    return cur.text[:1].isdigit() or cur.text.startswith("=")


@dataclass
class _Record:
    spec: KindSpec
    fields: dict[str, Any]
    line_number: int
    text: str
    primary: bool = False


class LineParser:
    """Parse raw show output against a grammar."""

    def __init__(self, grammar: Grammar):
        self.grammar = grammar

    def parse(self, raw_text: str, strict: bool = False) -> ParseResult:
        """
        Parse raw device output into entities.

        Args:
            raw_text: Captured output, possibly with CRLF endings and
                terminal line wrapping
            strict: Report lines that match no pattern as errors

        Returns:
            ParseResult with entities tagged ``Origin.ACTUAL``
        """
        result = ParseResult()
        lines = self._normalize(raw_text)

        records: dict[tuple, _Record] = {}
        for line in lines:
            if line.match is None:
                if strict:
                    result.errors.append(ParseError(
                        "Unrecognized line",
                        command=line.text,
                        line_number=line.number,
                    ))
                continue
            self._assemble(line, records, result)

        for record in records.values():
            entity = self._finish(record, result)
            if entity is not None:
                result.entities.append(entity)

        logger.debug(
            f"Parsed {len(result.entities)} entities "
            f"({len(result.errors)} errors, {len(result.warnings)} warnings)"
        )
        return result

    # --- Continuation normalization ---

    def _match(self, text: str) -> Optional[tuple[KindSpec, LinePattern, Any]]:
        for spec in self.grammar:
            for pattern in spec.patterns:
                m = pattern.match(text)
                if m is not None:
                    return spec, pattern, m
        return None

    def _normalize(self, raw_text: str) -> list[_Line]:
        lines: list[_Line] = []
        # Index of the first line that may still absorb a wrapped tail
        anchor = 0

        text = raw_text.replace("\r\n", "\n").replace("\r", "\n")
        for number, raw in enumerate(text.split("\n"), start=1):
            stripped = raw.strip()
            if not stripped or stripped.startswith("#"):
                anchor = len(lines)
                continue

            line = _Line(
                number=number,
                text=stripped,
                lead=raw[:1].isspace(),
                trail=raw[-1:].isspace(),
                match=self._match(stripped),
                indent=len(raw) - len(raw.lstrip()),
                width=len(raw),
            )
            if line.match is None and self._merge(lines, anchor, line):
                anchor = len(lines) - 1 if lines[-1].continuable else len(lines)
                continue

            lines.append(line)
            if line.match is not None:
                anchor = len(lines) - 1 if line.continuable else len(lines)
            elif len(lines) - anchor > MAX_WRAP_LINES:
                anchor = len(lines) - MAX_WRAP_LINES
        return lines

    def _merge(self, lines: list[_Line], anchor: int, line: _Line) -> bool:
        """Try to merge ``line`` into the trailing run of mergeable lines."""
        for start in range(anchor, len(lines)):
            head = lines[start]
            if not head.continuable:
                continue
            if any(l.match is not None for l in lines[start + 1:]):
                continue
            run = lines[start:] + [line]
            # A line that matched on its own only takes tails shaped like a wrap
            if head.match is not None and not all(
                _looks_wrapped(head, prev, cur) for prev, cur in zip(run, run[1:])
            ):
                continue
            for joined in self._joins(run):
                match = self._match(joined)
                if match is not None:
                    logger.debug(f"Merged wrapped line {line.number} into line {head.number}")
                    lines[start:] = [_Line(
                        number=head.number,
                        text=joined,
                        lead=head.lead,
                        trail=line.trail,
                        match=match,
                        indent=head.indent,
                        width=line.width,
                    )]
                    return True
        return False

    def _joins(self, run: list[_Line]) -> list[str]:
        """Candidate joins of a run, most likely first.

        A boundary where the tail starts with whitespace (or the head ends
        with it) is a wrap at a space. Otherwise the wrap may have split a
        token, so the verbatim join comes before the spaced one.
        """
        choices = []
        for prev, cur in zip(run, run[1:]):
            if prev.trail or cur.lead:
                choices.append((" ",))
            else:
                choices.append(("", " "))

        candidates = []
        for seps in product(*choices):
            joined = run[0].text
            for sep, cur in zip(seps, run[1:]):
                joined += sep + cur.text
            if joined not in candidates:
                candidates.append(joined)
        return candidates

    # --- Record assembly ---

    def _assemble(self, line: _Line, records: dict[tuple, _Record], result: ParseResult) -> None:
        spec, pattern, match = line.match
        try:
            values = pattern.extract(match)
        except (ValueError, TypeError) as e:
            result.errors.append(ParseError(
                f"Cannot convert {pattern.name} line: {e}",
                kind=spec.name,
                command=line.text,
                line_number=line.number,
            ))
            return

        key = (spec.name,) + tuple(str(values.get(name)) for name in spec.record_key)
        record = records.get(key)
        if record is None:
            record = _Record(spec=spec, fields={}, line_number=line.number, text=line.text)
            records[key] = record

        if pattern.primary:
            record.primary = True

        if pattern.collect:
            item = {k: v for k, v in values.items() if k not in spec.record_key}
            record.fields.setdefault(pattern.collect, []).append(item)
            for name in spec.record_key:
                if name in values:
                    record.fields[name] = values[name]
            return

        for name, value in values.items():
            previous = record.fields.get(name)
            if previous is not None and previous != value and name not in spec.record_key:
                warning = (
                    f"line {line.number}: {spec.name} field '{name}' repeated, "
                    f"keeping {value!r} over {previous!r}"
                )
                result.warnings.append(warning)
                logger.warning(warning)
            record.fields[name] = value

    def _finish(self, record: _Record, result: ParseResult) -> Optional[Entity]:
        spec = record.spec
        has_primary = any(p.primary for p in spec.patterns)
        if has_primary and not record.primary:
            result.errors.append(ParseError(
                "Partial record: primary line missing",
                kind=spec.name,
                command=record.text,
                line_number=record.line_number,
            ))
            return None

        fields = record.fields
        if spec.derive is not None:
            try:
                fields = spec.derive(dict(fields))
            except (ValueError, TypeError) as e:
                result.errors.append(ParseError(
                    f"Cannot derive fields: {e}",
                    kind=spec.name,
                    command=record.text,
                    line_number=record.line_number,
                ))
                return None

        missing = [name for name in spec.required_fields if fields.get(name) is None]
        if missing:
            result.errors.append(ParseError(
                f"Partial record: missing {', '.join(missing)}",
                kind=spec.name,
                command=record.text,
                line_number=record.line_number,
            ))
            return None

        return Entity(kind=spec.name, fields=spec.canonical(fields), origin=Origin.ACTUAL)


def parse(raw_text: str, grammar: Grammar, strict: bool = False) -> ParseResult:
    """Parse raw device output into entities for every kind in ``grammar``."""
    return LineParser(grammar).parse(raw_text, strict=strict)
