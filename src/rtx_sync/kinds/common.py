"""Token converters and regex fragments shared by the kind grammars."""
import ipaddress
from typing import Any

IPV4 = r"\d{1,3}(?:\.\d{1,3}){3}"


def to_int(token: str) -> int:
    return int(token)


def to_bool(token: str) -> bool:
    """Map the device's on/off and presence keywords to booleans."""
    if token in ("on", "established", "yes"):
        return True
    if token in ("off", "no"):
        return False
    raise ValueError(f"not a boolean keyword: {token!r}")


def to_address(token: str) -> str:
    """Validate and canonicalize a single address."""
    return str(ipaddress.ip_address(token))


def to_int_list(text: str) -> tuple[int, ...]:
    return tuple(int(token) for token in text.split())


def to_address_list(text: str) -> tuple[str, ...]:
    return tuple(to_address(token) for token in text.split())


def on_off(value: Any) -> str:
    return "on" if value else "off"


def join_words(values) -> str:
    return " ".join(str(v) for v in values)
