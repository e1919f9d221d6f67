"""Tests for the audit log."""
import json

import pytest

from rtx_sync.utils.audit_log import (
    REDACTED,
    ChangeRecord,
    ChangeTracker,
    get_recent_changes,
    sanitize_command,
)


class TestSanitizeCommand:
    """Tests for secret masking."""

    @pytest.mark.parametrize("line,expected", [
        ("ipsec ike pre-shared-key 1 text s3cret", "ipsec ike pre-shared-key 1 text [REDACTED]"),
        ("login password hunter2", "login password [REDACTED]"),
        ("administrator password encrypted 0a1b2c", "administrator password encrypted [REDACTED]"),
        ("pp auth myname user pass123", "pp auth myname user [REDACTED]"),
        ("snmp community read-only secret-ro", REDACTED),
        ("ip route default gateway 192.168.0.1", "ip route default gateway 192.168.0.1"),
        ("", ""),
    ])
    def test_sanitize(self, line, expected):
        """Test known secrets keep their prefix and others are masked whole."""
        assert sanitize_command(line) == expected


class TestChangeTracker:
    """Tests for ChangeTracker."""

    def test_log_change_written(self, audit_dir):
        """Test a record lands in the audit file as one JSON line."""
        tracker = ChangeTracker("rtx-edge", user="alice")

        record = tracker.log_change(
            operation="apply",
            parameters={"commands": ["ipsec ike pre-shared-key 1 text s3cret"]},
            success=True,
            after_state={"entities": [{"fields": {"pre_shared_key": "s3cret", "gateway": 1}}]},
        )

        lines = (audit_dir / "audit.log").read_text().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["device_id"] == "rtx-edge"
        assert data["user"] == "alice"
        assert data["parameters"]["commands"] == ["ipsec ike pre-shared-key 1 text [REDACTED]"]
        assert data["after_state"]["entities"][0]["fields"] == {"pre_shared_key": REDACTED, "gateway": 1}
        assert record.success

    def test_output_truncated(self, audit_dir):
        """Test long output is cut to 1000 characters."""
        record = ChangeTracker("rtx-edge").log_change("apply", {}, True, output="x" * 5000)

        assert len(record.output) == 1000

    def test_user_override(self, audit_dir):
        """Test a per-call user wins over the tracker default."""
        record = ChangeTracker("rtx-edge").log_change("save", {}, True, user="bob")

        assert record.user == "bob"

    def test_record_json_round_trip(self):
        """Test ChangeRecord survives JSON."""
        record = ChangeRecord(
            timestamp="2026-01-13T10:00:00+00:00",
            device_id="rtx-edge",
            operation="apply",
            user="system",
            dry_run=False,
            success=False,
            parameters={"ops": ["create dns_host abc"]},
            error="Invalid parameter",
        )

        assert ChangeRecord.from_json(record.to_json()) == record


class TestGetRecentChanges:
    """Tests for reading the audit log back."""

    def test_filters_and_order(self, audit_dir):
        """Test filtering by device and operation, newest first."""
        ChangeTracker("rtx-edge").log_change("apply", {"n": 1}, True)
        ChangeTracker("rtx-branch").log_change("apply", {"n": 2}, True)
        ChangeTracker("rtx-edge").log_change("save", {"n": 3}, True)
        ChangeTracker("rtx-edge").log_change("apply", {"n": 4}, False)

        records = get_recent_changes(device_id="rtx-edge", operation="apply")

        assert [r.parameters["n"] for r in records] == [4, 1]

    def test_limit(self, audit_dir):
        """Test only the last records are returned."""
        tracker = ChangeTracker("rtx-edge")
        for n in range(5):
            tracker.log_change("apply", {"n": n}, True)

        records = get_recent_changes(limit=2)

        assert [r.parameters["n"] for r in records] == [4, 3]

    def test_malformed_lines_skipped(self, audit_dir):
        """Test junk lines do not break reading."""
        ChangeTracker("rtx-edge").log_change("apply", {}, True)
        with open(audit_dir / "audit.log", "a", encoding="utf-8") as f:
            f.write("not json\n\n")

        assert len(get_recent_changes()) == 1

    def test_missing_file(self, tmp_path):
        """Test a missing log reads as empty."""
        assert get_recent_changes(str(tmp_path / "none.log")) == []
