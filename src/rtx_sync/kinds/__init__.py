"""Modeled feature areas of the RTX command line.

Each module declares the grammar of one or more kinds. ``default_grammar``
returns them in registry order, which is also the tie-break order for
dependency sorting.
"""
from ..config_engine.grammar import Grammar, KindSpec
from .dns import DNS_HOST, DNS_SERVER
from .filters import IP_FILTER, SECURE_FILTER
from .ipsec import IPSEC_TUNNEL
from .nat import NAT_MASQUERADE
from .routes import STATIC_ROUTE
from .schedule import SCHEDULE

KIND_REGISTRY: dict[str, KindSpec] = {
    spec.name: spec
    for spec in (
        IP_FILTER,
        SECURE_FILTER,
        STATIC_ROUTE,
        NAT_MASQUERADE,
        DNS_SERVER,
        DNS_HOST,
        SCHEDULE,
        IPSEC_TUNNEL,
    )
}

# kind -> kinds it references (created first, deleted last)
DEFAULT_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "secure_filter": ("ip_filter",),
    "static_route": ("ip_filter",),
}


def default_grammar() -> Grammar:
    """Grammar with every modeled kind."""
    return Grammar(KIND_REGISTRY.values())


__all__ = [
    "KIND_REGISTRY",
    "DEFAULT_DEPENDENCIES",
    "default_grammar",
    "IP_FILTER",
    "SECURE_FILTER",
    "STATIC_ROUTE",
    "NAT_MASQUERADE",
    "DNS_SERVER",
    "DNS_HOST",
    "SCHEDULE",
    "IPSEC_TUNNEL",
]
