"""Tests for the line parser."""
import pytest

from rtx_sync.config_engine import LineParser, ParseError, parse
from rtx_sync.config_engine.schema import Origin
from rtx_sync.kinds import default_grammar


@pytest.fixture
def grammar():
    return default_grammar()


@pytest.fixture
def parser(grammar):
    return LineParser(grammar)


SAMPLE_CONFIG = """\
# RTX1210 Rev.14.01.38
ip route default gateway 192.168.0.1
ip route 10.0.0.0/8 gateway 192.168.1.20 weight 2 gateway tunnel 1 keepalive
ip lan1 address 192.168.1.1/24
ip filter 100 pass 192.168.1.0/24 * tcp * www
ip filter 110 pass * 192.168.1.0/24 tcp * * established
ip lan1 secure filter in 100 110 dynamic 200
nat descriptor type 1000 masquerade
nat descriptor address inner 1000 192.168.1.1-192.168.1.254
nat descriptor masquerade static 1000 1 192.168.1.10:80=ipcp:8080 tcp
dns server 8.8.8.8 1.1.1.1
dns domain lookup off
dns static router.example.com 192.168.1.1
schedule at 1 */* 03:00 restart
ipsec ike remote address 1 203.0.113.10
ipsec ike local address 1 192.168.1.1
ipsec ike hash 1 sha
"""


class TestLineParser:
    """Tests for parsing captured show output."""

    def test_parse_every_kind(self, parser):
        """Test one entity per modeled kind is extracted from a full config."""
        result = parser.parse(SAMPLE_CONFIG)

        assert result.errors == []
        kinds = [e.kind for e in result.entities]
        assert kinds.count("static_route") == 2
        assert kinds.count("ip_filter") == 2
        for kind in ("secure_filter", "nat_masquerade", "dns_server", "dns_host",
                     "schedule", "ipsec_tunnel"):
            assert kinds.count(kind) == 1
        assert all(e.origin == Origin.ACTUAL for e in result.entities)

    def test_unmodeled_lines_ignored(self, parser):
        """Test lines of unmodeled features are skipped without errors."""
        result = parser.parse("ip lan1 address 192.168.1.1/24\nconsole prompt RTX\n")

        assert result.entities == []
        assert result.errors == []

    def test_strict_reports_unrecognized(self, parser):
        """Test strict mode reports every unrecognized line."""
        result = parser.parse("console prompt RTX\nip route default gateway 192.168.0.1\n", strict=True)

        assert len(result.entities) == 1
        assert len(result.errors) == 1
        assert result.errors[0].line == "console prompt RTX"
        assert result.errors[0].line_number == 1

    def test_default_route(self, parser):
        """Test 'default' becomes prefix 0.0.0.0 with mask 0."""
        route = parser.parse("ip route default gateway 192.168.0.1").entities[0]

        assert dict(route.fields) == {
            "prefix": "0.0.0.0",
            "mask": 0,
            "gateways": ({"target": "192.168.0.1"},),
        }

    def test_route_prefix_is_masked(self, parser):
        """Test the prefix is normalized to the network address."""
        route = parser.parse("ip route 10.1.2.3/8 gateway 192.168.1.20").entities[0]

        assert route.get("prefix") == "10.0.0.0"
        assert route.get("mask") == 8

    def test_route_dotted_mask(self, parser):
        """Test a dotted netmask is converted to a prefix length."""
        route = parser.parse("ip route 172.16.0.0/255.255.0.0 gateway pp 1").entities[0]

        assert route.get("mask") == 16
        assert route.get("gateways") == ({"target": "pp 1"},)

    def test_route_multiple_hops(self, parser):
        """Test every gateway and its options are parsed."""
        route = parser.parse(
            "ip route 10.0.0.0/8 gateway 192.168.1.20 weight 2 gateway tunnel 1 keepalive"
        ).entities[0]

        assert route.get("gateways") == (
            {"target": "192.168.1.20", "weight": 2},
            {"target": "tunnel 1", "keepalive": True},
        )

    def test_filter_fields(self, parser):
        """Test filter fields, with the any-port wildcard dropped."""
        result = parser.parse("ip filter 100 pass 192.168.1.0/24 * tcp * www")
        rule = result.entities[0]

        assert dict(rule.fields) == {
            "number": 100,
            "action": "pass",
            "source": "192.168.1.0/24",
            "destination": "*",
            "protocol": "tcp",
            "destination_port": "www",
        }

    @pytest.mark.parametrize("protocol", ["tcp", "6", "tcp,udp", "icmp-error", "tcpflag=0x0002/0x0fff", "*"])
    def test_filter_protocols(self, parser, protocol):
        """Test protocol keywords, numbers and lists are accepted."""
        rule = parser.parse(f"ip filter 100 pass * * {protocol}").entities[0]

        assert rule.get("protocol") == protocol

    def test_filter_unknown_protocol(self, parser):
        """Test a word that is not a protocol keeps the line unrecognized."""
        result = parser.parse("ip filter 100 pass * * tcppp select 1", strict=True)

        assert result.entities == []
        assert result.errors[0].message == "Unrecognized line"

    def test_filter_established(self, parser):
        """Test the established keyword becomes a boolean."""
        rule = parser.parse("ip filter 110 pass * 192.168.1.0/24 tcp * * established").entities[0]

        assert rule.get("established") is True
        assert rule.get("source_port") is None

    def test_secure_filter_lists(self, parser):
        """Test filter number lists are converted to integers."""
        binding = parser.parse("ip lan1 secure filter in 100 110 dynamic 200").entities[0]

        assert binding.get("interface") == "lan1"
        assert binding.get("direction") == "in"
        assert binding.get("filters") == (100, 110)
        assert binding.get("dynamic") == (200,)

    def test_multi_line_record(self, parser):
        """Test lines sharing a descriptor number form one entity."""
        result = parser.parse(
            "nat descriptor type 1000 masquerade\n"
            "nat descriptor address outer 1000 ipcp\n"
            "nat descriptor address inner 1000 192.168.1.1-192.168.1.254\n"
            "nat descriptor masquerade static 1000 1 192.168.1.10:80=ipcp:8080 tcp\n"
            "nat descriptor masquerade static 1000 2 192.168.1.11:22=ipcp:2222 tcp\n"
        )

        assert len(result.entities) == 1
        nat = result.entities[0]
        assert nat.get("descriptor_id") == 1000
        # ipcp is the default outer address
        assert nat.get("outer_address") is None
        assert nat.get("inner_network") == "192.168.1.1-192.168.1.254"
        assert nat.get("static_entries") == (
            {"entry": 1, "inside_address": "192.168.1.10", "inside_port": 80,
             "outside_address": "ipcp", "outside_port": 8080, "protocol": "tcp"},
            {"entry": 2, "inside_address": "192.168.1.11", "inside_port": 22,
             "outside_address": "ipcp", "outside_port": 2222, "protocol": "tcp"},
        )

    def test_records_split_by_key(self, parser):
        """Test separate descriptors stay separate entities."""
        result = parser.parse(
            "nat descriptor type 1000 masquerade\n"
            "nat descriptor type 2000 masquerade\n"
            "nat descriptor address inner 2000 auto\n"
        )

        assert sorted(e.get("descriptor_id") for e in result.entities) == [1000, 2000]

    def test_ipsec_record(self, parser):
        """Test IKE settings are grouped by gateway number."""
        result = parser.parse(
            "ipsec ike remote address 1 203.0.113.10\n"
            "ipsec ike pre-shared-key 1 text s3cret\n"
            "ipsec ike encryption 1 aes-cbc\n"
            "ipsec ike hash 1 sha\n"
            "ipsec ike keepalive use 1 on dpd 30 3\n"
        )

        tunnel = result.entities[0]
        assert dict(tunnel.fields) == {
            "gateway": 1,
            "remote_address": "203.0.113.10",
            "pre_shared_key": "s3cret",
            "hash": "sha",
            "keepalive": "on dpd 30 3",
        }

    def test_singleton_record(self, parser):
        """Test resolver lines form one entity without a primary line."""
        result = parser.parse("dns server 8.8.8.8 1.1.1.1\ndns domain lookup off\ndns domain example.com\n")

        assert len(result.entities) == 1
        dns = result.entities[0]
        assert dns.get("servers") == ("8.8.8.8", "1.1.1.1")
        assert dns.get("domain_lookup") is False
        assert dns.get("domain_name") == "example.com"

    def test_schedule_with_date(self, parser):
        """Test an optional date token is captured."""
        entry = parser.parse("schedule at 2 2024/01/01 12:00 pp connect 1").entities[0]

        assert entry.get("date") == "2024/01/01"
        assert entry.get("time") == "12:00"
        assert entry.get("command") == "pp connect 1"

    def test_fields_in_declared_order(self, parser):
        """Test fields come back in the kind's declaration order."""
        tunnel = parser.parse(
            "ipsec ike hash 1 sha\nipsec ike local address 1 10.0.0.1\nipsec ike remote address 1 10.0.0.2\n"
        ).entities[0]

        assert list(tunnel.fields) == ["gateway", "remote_address", "local_address", "hash"]


class TestContinuation:
    """Tests for merging terminal-wrapped lines."""

    def test_wrap_inside_token(self, parser):
        """Test a tail that continues a split token is joined verbatim."""
        wrapped = parser.parse(
            "ip filter 100 pass 192.168.1.0/24 192.168.2.\n"
            "0/24 tcp * www\n"
        )
        single = parser.parse("ip filter 100 pass 192.168.1.0/24 192.168.2.0/24 tcp * www")

        assert wrapped.errors == []
        assert [dict(e.fields) for e in wrapped.entities] == [dict(e.fields) for e in single.entities]

    def test_wrap_at_space(self, parser):
        """Test an indented tail extends a line that already matched."""
        wrapped = parser.parse(
            "ip route 10.0.0.0/8 gateway 192.168.1.1\n"
            "  gateway 192.168.1.2\n"
        )
        single = parser.parse("ip route 10.0.0.0/8 gateway 192.168.1.1 gateway 192.168.1.2")

        assert len(wrapped.entities) == 1
        assert dict(wrapped.entities[0].fields) == dict(single.entities[0].fields)

    def test_wrap_over_three_lines(self, parser):
        """Test a record wrapped twice is joined back into one line."""
        wrapped = parser.parse(
            "ip lan1 secure filter in 100 110 120 130 140 150 1\n"
            "60 170 180 190 200 210 220 230 240 250 260 270 2\n"
            "80 dynamic 300\n"
        )

        binding = wrapped.entities[0]
        assert binding.get("filters") == tuple(range(100, 290, 10))
        assert binding.get("dynamic") == (300,)

    def test_short_line_after_filter(self, parser):
        """Test an unrelated line after a complete rule stays separate."""
        result = parser.parse("ip filter 100 pass * * tcp\npp select 1\n", strict=True)

        assert dict(result.entities[0].fields) == {
            "number": 100, "action": "pass", "source": "*", "destination": "*", "protocol": "tcp",
        }
        assert [e.line for e in result.errors] == ["pp select 1"]

    def test_block_header_after_filter(self, parser):
        """Test a tunnel block header does not extend a wildcard rule."""
        result = parser.parse("ip filter 10 reject * * *\ntunnel select 1\n")

        rule = result.entities[0]
        assert rule.get("protocol") == "*"
        assert rule.get("source_port") is None
        assert rule.get("destination_port") is None

    def test_indented_block_lines_stay_separate(self, parser):
        """Test sibling lines inside a block are not joined."""
        result = parser.parse(
            "tunnel select 1\n"
            " ip tunnel secure filter in 100 110\n"
            " tunnel enable 1\n"
        )

        binding = result.for_kind("secure_filter")[0]
        assert binding.get("interface") == "tunnel"
        assert binding.get("filters") == (100, 110)

    def test_wide_line_takes_unindented_tail(self, parser):
        """Test a line cut at the terminal width takes the next line."""
        head = "ip route 10.0.0.0/8 gateway 192.168.100.100 weight 20 gateway 192.168.100.101 weight 2"
        result = parser.parse(f"{head}\ngateway 192.168.100.102\n")

        gateways = result.entities[0].get("gateways")
        assert len(gateways) == 3
        assert gateways[-1] == {"target": "192.168.100.102"}

    def test_blank_line_stops_merging(self, parser):
        """Test a tail after a blank line is never merged."""
        result = parser.parse(
            "ip route 10.0.0.0/8 gateway 192.168.1.1\n"
            "\n"
            "  gateway 192.168.1.2\n"
        )

        assert result.entities[0].get("gateways") == ({"target": "192.168.1.1"},)

    def test_crlf_line_endings(self, parser):
        """Test CRLF output parses like LF output."""
        crlf = parser.parse("dns server 8.8.8.8\r\ndns domain lookup off\r\n")
        lf = parser.parse("dns server 8.8.8.8\ndns domain lookup off\n")

        assert [dict(e.fields) for e in crlf.entities] == [dict(e.fields) for e in lf.entities]


class TestParseErrors:
    """Tests for collected parse problems."""

    def test_partial_record(self, parser):
        """Test a record without its primary line is reported, not emitted."""
        result = parser.parse("nat descriptor address outer 1000 primary\n")

        assert result.entities == []
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], ParseError)
        assert result.errors[0].kind == "nat_masquerade"
        assert "primary line missing" in result.errors[0].message

    def test_conversion_error(self, parser):
        """Test an invalid address in a converted field is reported."""
        result = parser.parse("dns server 300.1.1.1\ndns static host.example.com 192.168.1.5\n")

        assert [e.kind for e in result.entities] == ["dns_host"]
        assert len(result.errors) == 1
        assert result.errors[0].kind == "dns_server"
        assert result.errors[0].line == "dns server 300.1.1.1"

    def test_derive_error(self, parser):
        """Test an invalid route network is reported with its line number."""
        result = parser.parse("schedule at 1 */* 03:00 restart\nip route 300.0.0.0/8 gateway 10.0.0.1\n")

        assert [e.kind for e in result.entities] == ["schedule"]
        assert result.errors[0].kind == "static_route"
        assert result.errors[0].line_number == 2

    def test_repeated_field_warning(self, parser):
        """Test a repeated scalar keeps the last value and warns."""
        result = parser.parse("dns domain a.example\ndns domain b.example\n")

        assert result.entities[0].get("domain_name") == "b.example"
        assert len(result.warnings) == 1
        assert "domain_name" in result.warnings[0]

    def test_module_parse_function(self, grammar):
        """Test the module-level parse helper."""
        result = parse("schedule at 3 startup lua /startup.lua", grammar)

        assert result.for_kind("schedule")[0].get("time") == "startup"
