"""Static routes.

Device form::

    ip route default gateway 192.168.0.1
    ip route 10.0.0.0/8 gateway 192.168.1.20 weight 2 gateway tunnel 1 keepalive

A route is identified by destination prefix and mask. All next hops of a
route live on one line, and re-issuing the line replaces the route, so
updates are a plain replace.
"""
import ipaddress
from typing import Any, Optional

from ..config_engine.grammar import FieldSpec, FieldType, KindSpec, LinePattern, UpdateMode
from .common import IPV4

_TARGET = rf"(?:pp \d+|tunnel \d+|dhcp \S+|null|loopback|{IPV4})"
_OPTIONS = r"(?: weight \d+| filter \d+(?: \d+)*| hide| keepalive| name \S+)*"
_HOP = _TARGET + _OPTIONS
_NETWORK = rf"default|{IPV4}/(?:\d{{1,2}}|{IPV4})"

_KEYWORDS = {"weight", "filter", "hide", "keepalive", "name"}


def parse_gateways(text: str) -> tuple[dict[str, Any], ...]:
    """Split ``A weight 2 gateway B hide`` into one mapping per next hop."""
    hops = []
    for part in text.split(" gateway "):
        tokens = part.split()
        hop: dict[str, Any] = {}
        i = 0
        if tokens[0] in ("pp", "tunnel", "dhcp"):
            hop["target"] = f"{tokens[0]} {tokens[1]}"
            i = 2
        else:
            hop["target"] = tokens[0]
            i = 1
        while i < len(tokens):
            token = tokens[i]
            if token == "weight":
                hop["weight"] = int(tokens[i + 1])
                i += 2
            elif token == "filter":
                numbers = []
                i += 1
                while i < len(tokens) and tokens[i] not in _KEYWORDS:
                    numbers.append(int(tokens[i]))
                    i += 1
                hop["filters"] = tuple(numbers)
            elif token in ("hide", "keepalive"):
                hop[token] = True
                i += 1
            elif token == "name":
                hop["name"] = tokens[i + 1]
                i += 2
            else:
                raise ValueError(f"unexpected token in gateway: {token!r}")
        hops.append(hop)
    return tuple(hops)


def render_gateway(hop) -> str:
    parts = [str(hop["target"])]
    if hop.get("weight") is not None:
        parts.append(f"weight {hop['weight']}")
    if hop.get("filters"):
        parts.append("filter " + " ".join(str(n) for n in hop["filters"]))
    if hop.get("hide"):
        parts.append("hide")
    if hop.get("keepalive"):
        parts.append("keepalive")
    if hop.get("name"):
        parts.append(f"name {hop['name']}")
    return " ".join(parts)


def network_text(fields) -> str:
    if fields["prefix"] == "0.0.0.0" and fields["mask"] == 0:
        return "default"
    return f"{fields['prefix']}/{fields['mask']}"


def derive_route(fields: dict[str, Any]) -> dict[str, Any]:
    """Compute prefix and mask from the captured network token.

    The prefix is the captured address masked with the prefix length, so
    ``10.1.2.3/8`` becomes ``10.0.0.0`` with mask 8.
    """
    network = fields.pop("network")
    if network == "default":
        fields["prefix"], fields["mask"] = "0.0.0.0", 0
        return fields
    net = ipaddress.ip_network(network, strict=False)
    fields["prefix"] = str(net.network_address)
    fields["mask"] = net.prefixlen
    return fields


def _render_route(fields) -> Optional[str]:
    if not fields.get("gateways"):
        return None
    hops = " gateway ".join(render_gateway(hop) for hop in fields["gateways"])
    return f"ip route {network_text(fields)} gateway {hops}"


STATIC_ROUTE = KindSpec(
    name="static_route",
    description="IPv4 static route with one or more next hops",
    fields=(
        FieldSpec("prefix", FieldType.ADDRESS, natural_key=True, required=True),
        FieldSpec("mask", FieldType.INTEGER, natural_key=True, required=True),
        FieldSpec("gateways", FieldType.ENTITIES, required=True),
    ),
    patterns=(
        LinePattern(
            name="route",
            regex=rf"ip route (?P<network>{_NETWORK}) gateway (?P<gateways>{_HOP}(?: gateway {_HOP})*)",
            render=_render_route,
            remove=lambda f: f"no ip route {network_text(f)}",
            fields=("gateways",),
            convert={"gateways": parse_gateways},
            primary=True,
            continuable=True,
        ),
    ),
    record_key=("network",),
    update_mode=UpdateMode.REPLACE,
    derive=derive_route,
)
