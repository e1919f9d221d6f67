"""Tests for desired-state validation."""
import pytest

from rtx_sync.config_engine import ConfigValidator
from rtx_sync.config_engine.schema import Entity
from rtx_sync.kinds import default_grammar


@pytest.fixture
def validator():
    return ConfigValidator(default_grammar())


class TestConfigValidator:
    """Tests for ConfigValidator."""

    def test_valid_route(self, validator):
        """Test a well-formed route passes."""
        result = validator.validate("static_route", [
            {"prefix": "10.0.0.0", "mask": 8, "gateways": [{"target": "192.168.1.1"}]},
        ])

        assert result.valid
        assert result.errors == []

    def test_unknown_kind(self, validator):
        """Test an unmodeled kind fails."""
        result = validator.validate("vlan", [{"id": 10}])

        assert not result.valid
        assert "Unknown kind" in result.errors[0]

    def test_unknown_field(self, validator):
        """Test misspelled fields are reported."""
        result = validator.validate("dns_host", [{"name": "a.example.com", "adress": "192.168.1.1"}])

        assert not result.valid
        assert any("unknown field 'adress'" in e for e in result.errors)
        assert any("missing required field 'address'" in e for e in result.errors)

    def test_order_field_optional(self, validator):
        """Test rule numbers may be left to position."""
        result = validator.validate("ip_filter", [
            {"action": "pass", "source": "*", "destination": "*", "protocol": "tcp"},
        ])

        assert result.valid

    def test_empty_required_value(self, validator):
        """Test an empty string counts as missing."""
        result = validator.validate("schedule", [{"id": 1, "time": "", "command": "restart"}])

        assert not result.valid
        assert "schedule[1]: missing required field 'time'" in result.errors

    @pytest.mark.parametrize("fields,message", [
        ({"id": "1", "time": "03:00", "command": "restart"}, "must be an integer"),
        ({"id": True, "time": "03:00", "command": "restart"}, "must be an integer"),
        ({"id": 1, "time": 300, "command": "restart"}, "must be a string"),
    ])
    def test_scalar_types(self, validator, fields, message):
        """Test scalar type mismatches."""
        result = validator.validate("schedule", [fields])

        assert not result.valid
        assert message in result.errors[0]

    def test_address_type(self, validator):
        """Test address fields accept hosts and networks only."""
        good = validator.validate("dns_host", [{"name": "a.example.com", "address": "2001:db8::1"}])
        bad = validator.validate("dns_host", [{"name": "a.example.com", "address": "nas"}])

        assert good.valid
        assert not bad.valid
        assert "not a valid address" in bad.errors[0]

    def test_list_and_entities_types(self, validator):
        """Test list fields need scalars and entity lists need mappings."""
        result = validator.validate("secure_filter", [
            {"interface": "lan1", "direction": "in", "filters": "100 110"},
        ])
        routes = validator.validate("static_route", [
            {"prefix": "10.0.0.0", "mask": 8, "gateways": ["192.168.1.1"]},
        ])

        assert "must be a list" in result.errors[0]
        assert "must be a list of mappings" in routes.errors[0]

    def test_boolean_type(self, validator):
        """Test on/off strings are not booleans."""
        result = validator.validate("dns_server", [{"domain_lookup": "off"}])

        assert "must be a boolean" in result.errors[0]

    def test_explicit_key_allowed(self, validator):
        """Test the explicit key entry is not a field error."""
        result = validator.validate("dns_host", [
            {"key": "nas", "name": "a.example.com", "address": "192.168.1.1"},
        ])

        assert result.valid

    def test_entity_of_wrong_kind(self, validator):
        """Test an Entity in another kind's list is rejected."""
        entity = Entity("dns_host", {"name": "a.example.com", "address": "192.168.1.1"})

        result = validator.validate("schedule", [entity])

        assert not result.valid
        assert "entity of kind dns_host" in result.errors[0]

    def test_not_a_mapping(self, validator):
        """Test list items must be mappings."""
        result = validator.validate("dns_host", ["a.example.com"])

        assert "expected a mapping, got str" in result.errors[0]

    def test_large_change_warning(self):
        """Test large lists warn but stay valid."""
        validator = ConfigValidator(default_grammar(), large_change_threshold=2)
        hosts = [{"name": f"h{i}.example.com", "address": f"192.168.1.{i}"} for i in range(1, 4)]

        result = validator.validate("dns_host", hosts)

        assert result.valid
        assert result.warnings == ["Large change set (3 dns_host entities) - consider staging"]
