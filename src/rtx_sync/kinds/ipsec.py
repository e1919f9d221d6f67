"""IPsec IKE gateways.

Device form::

    ipsec ike remote address 1 203.0.113.10
    ipsec ike local address 1 192.168.1.1
    ipsec ike pre-shared-key 1 text secret
    ipsec ike encryption 1 aes-cbc-256
    ipsec ike hash 1 sha
    ipsec ike group 1 modp1536
    ipsec ike keepalive use 1 on dpd 30 3

Every line is keyed by the gateway number; the remote address line is the
primary one. Algorithm fields default to the values the device applies when
the line is absent.
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


def _setting(keyword: str, field_name: str, value_regex: str = r"\S+", prefix: str = "") -> LinePattern:
    """Pattern for an ``ipsec ike <keyword> <gw> [prefix ]<value>`` line."""
    lead = f"{prefix} " if prefix else ""
    return LinePattern(
        name=field_name,
        regex=rf"ipsec ike {keyword} (?P<gateway>\d+) {lead}(?P<{field_name}>{value_regex})",
        render=lambda f: (
            f"ipsec ike {keyword} {f['gateway']} {lead}{f[field_name]}"
            if f.get(field_name) is not None else None
        ),
        remove=lambda f: f"no ipsec ike {keyword} {f['gateway']}",
        fields=(field_name,),
        convert={"gateway": to_int},
        primary=field_name == "remote_address",
    )


IPSEC_TUNNEL = KindSpec(
    name="ipsec_tunnel",
    description="IKE gateway parameters of an IPsec tunnel",
    fields=(
        FieldSpec("gateway", FieldType.INTEGER, natural_key=True, required=True),
        FieldSpec("remote_address", required=True),
        FieldSpec("local_address"),
        FieldSpec("pre_shared_key", policy=FieldPolicy.COMPUTED_IF_ABSENT),
        FieldSpec("encryption", default="aes-cbc"),
        FieldSpec("hash", default="sha256"),
        FieldSpec("group", default="modp2048"),
        FieldSpec("keepalive", policy=FieldPolicy.COMPUTED_IF_ABSENT),
    ),
    patterns=(
        _setting("remote address", "remote_address"),
        _setting("local address", "local_address"),
        _setting("pre-shared-key", "pre_shared_key", prefix="text"),
        _setting("encryption", "encryption"),
        _setting("hash", "hash"),
        _setting("group", "group"),
        _setting("keepalive use", "keepalive", r"off|on(?: (?:dpd|heartbeat) \d+(?: \d+)?)?"),
    ),
    record_key=("gateway",),
    update_mode=UpdateMode.PARTIAL,
)
