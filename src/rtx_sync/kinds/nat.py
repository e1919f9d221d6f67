"""NAT masquerade descriptors.

Device form::

    nat descriptor type 1000 masquerade
    nat descriptor address outer 1000 ipcp
    nat descriptor address inner 1000 192.168.1.1-192.168.1.254
    nat descriptor masquerade static 1000 1 192.168.1.10:80=203.0.113.1:8080 tcp

One descriptor spans a primary ``type`` line plus dependent lines that share
the descriptor number. Static port mappings are collected one per line.
"""
from ..config_engine.grammar import (
    FieldPolicy,
    FieldSpec,
    FieldType,
    KindSpec,
    LinePattern,
    UpdateMode,
)
from .common import to_int


def _render_static(f) -> str:
    line = (
        f"nat descriptor masquerade static {f['descriptor_id']} {f['entry']} "
        f"{f['inside_address']}:{f['inside_port']}={f['outside_address']}:{f['outside_port']}"
    )
    if f.get("protocol"):
        line += f" {f['protocol']}"
    return line


NAT_MASQUERADE = KindSpec(
    name="nat_masquerade",
    description="IP masquerade NAT descriptor with static port mappings",
    fields=(
        FieldSpec("descriptor_id", FieldType.INTEGER, natural_key=True, required=True),
        FieldSpec("outer_address", default="ipcp"),
        FieldSpec("inner_network", policy=FieldPolicy.COMPUTED_IF_ABSENT, default="auto"),
        FieldSpec("static_entries", FieldType.ENTITIES),
    ),
    patterns=(
        LinePattern(
            name="type",
            regex=r"nat descriptor type (?P<descriptor_id>\d+) masquerade",
            render=lambda f: f"nat descriptor type {f['descriptor_id']} masquerade",
            remove=lambda f: f"no nat descriptor type {f['descriptor_id']}",
            convert={"descriptor_id": to_int},
            primary=True,
        ),
        LinePattern(
            name="outer",
            regex=r"nat descriptor address outer (?P<descriptor_id>\d+) (?P<outer_address>\S+)",
            render=lambda f: (
                f"nat descriptor address outer {f['descriptor_id']} {f['outer_address']}"
                if f.get("outer_address") else None
            ),
            remove=lambda f: f"no nat descriptor address outer {f['descriptor_id']}",
            fields=("outer_address",),
            convert={"descriptor_id": to_int},
        ),
        LinePattern(
            name="inner",
            regex=r"nat descriptor address inner (?P<descriptor_id>\d+) (?P<inner_network>\S+)",
            render=lambda f: (
                f"nat descriptor address inner {f['descriptor_id']} {f['inner_network']}"
                if f.get("inner_network") else None
            ),
            remove=lambda f: f"no nat descriptor address inner {f['descriptor_id']}",
            fields=("inner_network",),
            convert={"descriptor_id": to_int},
        ),
        LinePattern(
            name="static",
            regex=(
                r"nat descriptor masquerade static (?P<descriptor_id>\d+) (?P<entry>\d+) "
                r"(?P<inside_address>[^\s:]+):(?P<inside_port>\d+)="
                r"(?P<outside_address>[^\s:]+):(?P<outside_port>\d+)(?: (?P<protocol>\S+))?"
            ),
            render=_render_static,
            remove=lambda f: f"no nat descriptor masquerade static {f['descriptor_id']} {f['entry']}",
            collect="static_entries",
            convert={
                "descriptor_id": to_int,
                "entry": to_int,
                "inside_port": to_int,
                "outside_port": to_int,
            },
        ),
    ),
    record_key=("descriptor_id",),
    update_mode=UpdateMode.PARTIAL,
)
