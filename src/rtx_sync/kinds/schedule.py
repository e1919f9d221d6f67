"""Scheduled commands.

Device form::

    schedule at 1 */* 03:00 restart
    schedule at 2 2024/01/01 12:00 pp connect 1
    schedule at 3 startup lua /startup.lua
"""
from ..config_engine.grammar import FieldSpec, FieldType, KindSpec, LinePattern, UpdateMode
from .common import to_int


def _render_schedule(f) -> str:
    parts = ["schedule at", str(f["id"])]
    if f.get("date"):
        parts.append(f["date"])
    parts.extend([f["time"], f["command"]])
    return " ".join(parts)


SCHEDULE = KindSpec(
    name="schedule",
    description="Command run at a time of day, on a date, or at startup",
    fields=(
        FieldSpec("id", FieldType.INTEGER, natural_key=True, required=True),
        FieldSpec("date"),
        FieldSpec("time", required=True),
        FieldSpec("command", required=True),
    ),
    patterns=(
        LinePattern(
            name="at",
            regex=(
                r"schedule at (?P<id>\d+) (?:(?P<date>[\d*]+/[\d*,-]+(?:/[\d*]+)?) )?"
                r"(?P<time>[\d*]{1,2}:[\d*]{2}|startup) (?P<command>.+)"
            ),
            render=_render_schedule,
            remove=lambda f: f"no schedule at {f['id']}",
            fields=("date", "time", "command"),
            convert={"id": to_int},
            primary=True,
        ),
    ),
    record_key=("id",),
    update_mode=UpdateMode.REPLACE,
)
