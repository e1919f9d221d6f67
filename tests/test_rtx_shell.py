"""Tests for the Yamaha RTX shell (no real device needed)."""
from unittest.mock import AsyncMock

import pytest

from rtx_sync.config_engine import CommandRejectedError, TransientIOError
from rtx_sync.devices import DeviceConfig, RTXShell
from rtx_sync.devices.rtx import RTXSSH


class StubSSH:
    """Answers send_command from a table; exceptions in the table are raised."""

    def __init__(self, outputs=None):
        self.outputs = outputs or {}
        self.sent = []
        self.closed = False

    async def send_command(self, command, timeout=30):
        self.sent.append(command)
        output = self.outputs.get(command, "")
        if isinstance(output, BaseException):
            raise output
        return output

    async def close(self):
        self.closed = True


@pytest.fixture
def shell():
    return RTXShell("rtx-edge", DeviceConfig(name="rtx-edge", host="192.0.2.1", password="pw", admin_password="admin-pw"))


def attach(shell, outputs=None, admin=True):
    stub = StubSSH(outputs)
    shell._ssh = stub
    shell._connected = True
    shell._admin = admin
    return stub


class TestErrorDetection:
    """Tests for spotting refused lines in device output."""

    @pytest.mark.parametrize("output", [
        "Error: Invalid parameter",
        "% Error: Unrecognized command",
        "Command failed: interface busy",
        "Permission denied",
    ])
    def test_errors(self, shell, output):
        """Test known error shapes are detected."""
        assert shell._has_error(f"\n{output}\n") == output

    def test_clean_output(self, shell):
        """Test normal output is not an error."""
        assert shell._has_error("ip route default gateway 192.168.0.1\n") is None


class TestRTXShell:
    """Tests for RTXShell command handling."""

    @pytest.mark.asyncio
    async def test_run_batch(self, shell):
        """Test every line is sent in order."""
        stub = attach(shell)

        await shell.run_batch(["dns server 8.8.8.8", "dns domain lookup off"], timeout=5)

        assert stub.sent == ["dns server 8.8.8.8", "dns domain lookup off"]

    @pytest.mark.asyncio
    async def test_run_batch_rejected(self, shell):
        """Test a refused line stops the batch with its index."""
        stub = attach(shell, {"ip route bogus": "Error: Invalid parameter"})

        with pytest.raises(CommandRejectedError) as exc_info:
            await shell.run_batch(["dns server 8.8.8.8", "ip route bogus", "save"], timeout=5)

        assert exc_info.value.index == 1
        assert exc_info.value.command == "ip route bogus"
        assert exc_info.value.message == "Error: Invalid parameter"
        assert stub.sent == ["dns server 8.8.8.8", "ip route bogus"]

    @pytest.mark.asyncio
    async def test_run_batch_session_lost(self, shell):
        """Test a dropped session reports the completed line count."""
        stub = attach(shell, {"dns domain lookup off": EOFError("Session closed by device")})

        with pytest.raises(TransientIOError) as exc_info:
            await shell.run_batch(["dns server 8.8.8.8", "dns domain lookup off"], timeout=5)

        assert exc_info.value.completed == 1
        assert stub.closed
        assert not shell.is_connected

    @pytest.mark.asyncio
    async def test_show_without_administrator(self, shell):
        """Test show commands do not enter administrator mode."""
        attach(shell, {"show config": "ip route default gateway 192.168.0.1"}, admin=False)

        output = await shell.show("show config")

        assert output == "ip route default gateway 192.168.0.1"
        assert shell._admin is False

    @pytest.mark.asyncio
    async def test_administrator_mode_entered(self, shell):
        """Test configuration lines switch to administrator mode first."""
        stub = attach(shell, admin=False)
        stub.enter_administrator = AsyncMock()

        await shell.run_one("dns server 8.8.8.8", timeout=5)

        stub.enter_administrator.assert_awaited_once_with("admin-pw", timeout=5)
        assert shell._admin is True

    @pytest.mark.asyncio
    async def test_administrator_session_failure(self, shell):
        """Test a failed session during setup is transient."""
        stub = attach(shell, admin=False)
        stub.enter_administrator = AsyncMock(side_effect=TimeoutError("no prompt"))

        with pytest.raises(TransientIOError):
            await shell.run_one("dns server 8.8.8.8", timeout=5)
        assert not shell.is_connected

    @pytest.mark.asyncio
    async def test_save(self, shell):
        """Test save sends the save command."""
        stub = attach(shell)

        await shell.save()

        assert stub.sent == ["save"]


class TestRTXSSH:
    """Tests for output cleanup in the SSH handler."""

    @pytest.mark.asyncio
    async def test_send_command_strips_echo_and_prompt(self):
        """Test the echoed command and trailing prompt are removed."""
        ssh = RTXSSH("192.0.2.1", 22, "admin", "pw")
        ssh.send_raw = AsyncMock()
        ssh.read_until = AsyncMock(return_value="dns server 8.8.8.8\r\nError: Invalid parameter\r\nRTX1210# ")

        output = await ssh.send_command("dns server 8.8.8.8")

        assert output == "Error: Invalid parameter"
        ssh.send_raw.assert_awaited_once_with("dns server 8.8.8.8\r")

    @pytest.mark.asyncio
    async def test_administrator_refused(self):
        """Test a wrong administrator password is a refusal."""
        ssh = RTXSSH("192.0.2.1", 22, "admin", "pw")
        ssh.send_raw = AsyncMock()
        ssh.read_until = AsyncMock(side_effect=["Password: ", "Incorrect password\r\nRTX1210> "])

        with pytest.raises(CommandRejectedError, match="Administrator authentication failed"):
            await ssh.enter_administrator("wrong")
