"""IP filter rules and their interface bindings.

Device form::

    ip filter 100 pass 192.168.1.0/24 * tcp * www
    ip lan1 secure filter in 100 110 120 dynamic 200

Filter rules are an ordered collection: the rule number decides evaluation
order and is assigned from list position when the caller leaves it out.
Secure filter bindings reference rule numbers, so they depend on the rules.
"""
from typing import Optional

from ..config_engine.grammar import (
    FieldSpec,
    FieldType,
    IdentityMode,
    KindSpec,
    LinePattern,
    UpdateMode,
)
from .common import join_words, to_bool, to_int, to_int_list

_ACTION = r"(?:pass|reject|restrict)(?:-log|-nolog)?"
_ADDRESS = r"[\d.*/,-]+"
_PROTOCOL_WORD = (
    r"(?:\*|\d+|udp|ip|gre|esp|ah|ipip|icmp(?:-error|-info)?"
    r"|tcp(?:syn|fin|rst|flag!?=0x[0-9a-f]+(?:/0x[0-9a-f]+)?)?)"
)
_PROTOCOL = rf"{_PROTOCOL_WORD}(?:,{_PROTOCOL_WORD})*"
_PORT = r"(?!established\b)[\w*,-]+"


def _render_filter(f) -> str:
    parts = [
        "ip filter",
        str(f["number"]),
        f["action"],
        f["source"],
        f["destination"],
        f["protocol"],
    ]
    if f.get("source_port") is not None:
        parts.append(f["source_port"])
    elif f.get("destination_port") is not None:
        parts.append("*")
    if f.get("destination_port") is not None:
        parts.append(f["destination_port"])
    if f.get("established"):
        parts.append("established")
    return " ".join(parts)


IP_FILTER = KindSpec(
    name="ip_filter",
    description="Numbered static IP filter rule",
    fields=(
        FieldSpec("number", FieldType.INTEGER, required=True),
        FieldSpec("action", natural_key=True, required=True),
        FieldSpec("source", natural_key=True, required=True),
        FieldSpec("destination", natural_key=True, required=True),
        FieldSpec("protocol", required=True),
        FieldSpec("source_port", default="*"),
        FieldSpec("destination_port", default="*"),
        FieldSpec("established", FieldType.BOOLEAN, default=False),
    ),
    patterns=(
        LinePattern(
            name="filter",
            regex=(
                rf"ip filter (?P<number>\d+) (?P<action>{_ACTION}) "
                rf"(?P<source>{_ADDRESS}) (?P<destination>{_ADDRESS}) (?P<protocol>{_PROTOCOL})"
                rf"(?: (?P<source_port>{_PORT})(?: (?P<destination_port>{_PORT}))?)?"
                r"(?: (?P<established>established))?"
            ),
            render=_render_filter,
            remove=lambda f: f"no ip filter {f['number']}",
            fields=("action", "source", "destination", "protocol",
                    "source_port", "destination_port", "established"),
            convert={"number": to_int, "established": to_bool},
            primary=True,
            continuable=True,
        ),
    ),
    record_key=("number",),
    identity=IdentityMode.ORDERED,
    update_mode=UpdateMode.REPLACE,
    order_field="number",
    sequence_start=100,
    sequence_step=10,
)


def _render_binding(f) -> Optional[str]:
    filters = f.get("filters") or ()
    dynamic = f.get("dynamic") or ()
    if not filters and not dynamic:
        return None
    line = f"ip {f['interface']} secure filter {f['direction']}"
    if filters:
        line += " " + join_words(filters)
    if dynamic:
        line += " dynamic " + join_words(dynamic)
    return line


SECURE_FILTER = KindSpec(
    name="secure_filter",
    description="Filter rule list bound to an interface direction",
    fields=(
        FieldSpec("interface", natural_key=True, required=True),
        FieldSpec("direction", natural_key=True, required=True),
        FieldSpec("filters", FieldType.LIST),
        FieldSpec("dynamic", FieldType.LIST),
    ),
    patterns=(
        LinePattern(
            name="binding",
            regex=(
                r"ip (?P<interface>\S+) secure filter (?P<direction>in|out)"
                r"(?: (?P<filters>\d+(?: \d+)*))?(?: dynamic (?P<dynamic>\d+(?: \d+)*))?"
            ),
            render=_render_binding,
            remove=lambda f: f"no ip {f['interface']} secure filter {f['direction']}",
            fields=("filters", "dynamic"),
            convert={"filters": to_int_list, "dynamic": to_int_list},
            primary=True,
            continuable=True,
        ),
    ),
    record_key=("interface", "direction"),
    update_mode=UpdateMode.PARTIAL,
)
