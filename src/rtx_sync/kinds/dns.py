"""DNS resolver settings and static host entries.

Device form::

    dns server 192.168.1.1 8.8.8.8
    dns domain example.com
    dns domain lookup off
    dns static router.example.com 192.168.1.1
"""
from ..config_engine.grammar import FieldSpec, FieldType, KindSpec, LinePattern, UpdateMode
from .common import IPV4, join_words, on_off, to_address_list, to_bool

DNS_SERVER = KindSpec(
    name="dns_server",
    description="Resolver settings (one per device)",
    fields=(
        FieldSpec("servers", FieldType.LIST),
        FieldSpec("domain_name"),
        FieldSpec("domain_lookup", FieldType.BOOLEAN, default=True),
    ),
    patterns=(
        LinePattern(
            name="servers",
            regex=rf"dns server (?P<servers>{IPV4}(?: {IPV4})*)",
            render=lambda f: f"dns server {join_words(f['servers'])}" if f.get("servers") else None,
            remove=lambda f: "no dns server",
            fields=("servers",),
            convert={"servers": to_address_list},
        ),
        LinePattern(
            name="domain",
            regex=r"dns domain (?!lookup )(?P<domain_name>\S+)",
            render=lambda f: f"dns domain {f['domain_name']}" if f.get("domain_name") else None,
            remove=lambda f: "no dns domain",
            fields=("domain_name",),
        ),
        LinePattern(
            name="lookup",
            regex=r"dns domain lookup (?P<domain_lookup>on|off)",
            render=lambda f: (
                f"dns domain lookup {on_off(f['domain_lookup'])}"
                if f.get("domain_lookup") is not None else None
            ),
            remove=lambda f: "no dns domain lookup",
            fields=("domain_lookup",),
            convert={"domain_lookup": to_bool},
        ),
    ),
    update_mode=UpdateMode.PARTIAL,
)

DNS_HOST = KindSpec(
    name="dns_host",
    description="Static host name to address mapping",
    fields=(
        FieldSpec("name", natural_key=True, required=True),
        FieldSpec("address", FieldType.ADDRESS, required=True),
        FieldSpec("record_type", default="a"),
    ),
    patterns=(
        LinePattern(
            name="static",
            regex=(
                r"dns static (?:(?P<record_type>a|aaaa|ptr|mx|ns|cname) )?"
                r"(?P<name>\S+) (?P<address>\S+)"
            ),
            render=lambda f: " ".join(
                part for part in (
                    "dns static",
                    f.get("record_type"),
                    f["name"],
                    f["address"],
                ) if part
            ),
            remove=lambda f: f"no dns static {f['name']}",
            fields=("address", "record_type"),
            primary=True,
        ),
    ),
    record_key=("name",),
    update_mode=UpdateMode.REPLACE,
)
