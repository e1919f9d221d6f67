"""Shared fixtures: an in-memory router shell and an isolated audit log."""
import asyncio
from typing import Callable, Optional

import pytest

from rtx_sync.config_engine.errors import CommandRejectedError, TransientIOError
from rtx_sync.devices.base import DeviceConfig, RemoteShell
from rtx_sync.utils.audit_log import audit_logger, setup_audit_logging


class FakeShell(RemoteShell):
    """Scripted stand-in for a router session.

    ``config_text`` is returned by ``show``. Lines listed in ``reject`` are
    refused with the mapped message. ``drop_at`` holds counts of accepted
    lines at which the session breaks once.
    """

    def __init__(self, device_id: str = "rtx-test", config_text: str = "", supports_batch: bool = True):
        super().__init__(device_id, DeviceConfig(name=device_id, host="192.0.2.1"))
        self.config_text = config_text
        self.supports_batch = supports_batch
        self.sent: list[str] = []
        self.batches: list[list[str]] = []
        self.shows: list[str] = []
        self.saves = 0
        self.reject: dict[str, str] = {}
        self.drop_at: list[int] = []
        self.save_error: Optional[str] = None
        self.delay = 0.0
        self.before_send: Optional[Callable[[str], None]] = None

    async def connect(self) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    async def show(self, command: str, timeout: float = 30) -> str:
        self.shows.append(command)
        return self.config_text

    async def run_batch(self, lines: list[str], timeout: float) -> str:
        self.batches.append(list(lines))
        for index, line in enumerate(lines):
            await self._accept(line, index)
        return ""

    async def run_one(self, line: str, timeout: float) -> str:
        await self._accept(line, 0)
        return ""

    async def save(self) -> None:
        if self.save_error:
            raise CommandRejectedError(self.save_error, command="save")
        self.saves += 1

    async def _accept(self, line: str, index: int) -> None:
        if self.before_send is not None:
            self.before_send(line)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.drop_at and len(self.sent) == self.drop_at[0]:
            self.drop_at.pop(0)
            raise TransientIOError("Connection reset by peer", command=line, completed=index)
        if line in self.reject:
            raise CommandRejectedError(
                self.reject[line], command=line, index=index, output=f"Error: {self.reject[line]}",
            )
        self.sent.append(line)


@pytest.fixture
def fake_shell():
    """Fresh FakeShell with an empty configuration."""
    return FakeShell()


@pytest.fixture(autouse=True)
def audit_dir(tmp_path, monkeypatch):
    """Keep audit records inside the test's temp directory."""
    directory = tmp_path / "audit"
    monkeypatch.setenv("RTXSYNC_AUDIT_DIR", str(directory))
    setup_audit_logging(str(directory))
    yield directory
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()
