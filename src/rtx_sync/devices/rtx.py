"""Yamaha RTX router shell via SSH CLI.

Technical details:
- SSH interactive shell via invoke_shell()
- Prompt ends with '>' (user) or '#' (administrator)
- Configuration lines need administrator mode ('administrator' + password)
- Paging disabled with 'console lines infinity'
- Errors are reported inline, e.g. "Error: Invalid parameter"
- 'save' persists the running configuration

Command Reference:
- show config            : Full running configuration
- administrator          : Enter administrator mode (prompts for password)
- console lines infinity : Disable --More-- paging for this session
- save                   : Write running configuration to flash
"""
import asyncio
import logging
import re
import socket
import time
from typing import Optional

import paramiko

from .base import DeviceConfig, RemoteShell
from ..config_engine.errors import CommandRejectedError, TransientIOError
from ..utils.audit_log import sanitize_command
from ..utils.connection import with_retry
from ..utils.logging_config import timed, perf_logger

logger = logging.getLogger(__name__)

PROMPT_PATTERN = re.compile(r"(?:^|\n)[^\n]*[>#] ?$")
ADMIN_PROMPT_PATTERN = re.compile(r"(?:^|\n)[^\n]*# ?$")
PASSWORD_PATTERN = re.compile(r"Password:\s*$")
MORE_PATTERN = re.compile(r"--- ?[Mm]ore ?---|--More--")
ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")

# Exceptions that mean the session is gone, not that a line was refused
SESSION_ERRORS = (
    OSError,
    EOFError,
    socket.timeout,
    asyncio.TimeoutError,
    paramiko.SSHException,
)


class RTXSSH:
    """Low-level SSH handler for RTX routers."""

    def __init__(self, host: str, port: int, username: str, password: str, timeout: float = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._shell: Optional[paramiko.Channel] = None

    async def connect(self) -> None:
        """Establish SSH connection with interactive shell."""
        loop = asyncio.get_running_loop()

        def _connect():
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            client.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            return client

        self._client = await loop.run_in_executor(None, _connect)

        def _get_shell():
            shell = self._client.invoke_shell(width=200, height=0)
            shell.settimeout(self.timeout)
            return shell

        self._shell = await loop.run_in_executor(None, _get_shell)
        await self.read_until(PROMPT_PATTERN, timeout=10)

    async def close(self) -> None:
        """Close SSH connection."""
        if self._shell:
            try:
                self._shell.close()
            except SESSION_ERRORS as e:
                logger.debug(f"Error closing shell: {e}")
            self._shell = None
        if self._client:
            try:
                self._client.close()
            except SESSION_ERRORS as e:
                logger.debug(f"Error closing client: {e}")
            self._client = None

    async def _read_available(self) -> str:
        """Read available data from shell."""
        if not self._shell:
            raise ConnectionError("Not connected")

        loop = asyncio.get_running_loop()

        def _recv():
            if self._shell.recv_ready():
                data = self._shell.recv(65535)
                if not data:
                    raise EOFError("Session closed by device")
                return ANSI_PATTERN.sub("", data.decode("utf-8", errors="ignore"))
            if self._shell.closed or self._shell.exit_status_ready():
                raise EOFError("Session closed by device")
            return ""

        return await loop.run_in_executor(None, _recv)

    async def read_until(self, pattern: re.Pattern, timeout: float = 30) -> str:
        """
        Read until ``pattern`` matches the buffered output.

        Raises:
            TimeoutError: If the pattern does not appear in time
        """
        output = ""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            chunk = await self._read_available()
            if not chunk:
                await asyncio.sleep(0.1)
                continue

            output += chunk
            if MORE_PATTERN.search(output):
                await self.send_raw(" ")
                output = MORE_PATTERN.sub("", output)
                continue
            if pattern.search(output):
                return output

        raise TimeoutError(f"No prompt from {self.host} within {timeout}s")

    async def send_raw(self, data: str) -> None:
        """Send raw string to shell."""
        if not self._shell:
            raise ConnectionError("Not connected")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._shell.send, data)

    async def send_command(self, command: str, timeout: float = 30) -> str:
        """Send a command and return the output without echo and prompt."""
        await self.send_raw(f"{command}\r")
        output = await self.read_until(PROMPT_PATTERN, timeout=timeout)

        lines = output.replace("\r\n", "\n").split("\n")
        if lines and command.strip() and command.strip() in lines[0]:
            lines = lines[1:]
        if lines and PROMPT_PATTERN.search(lines[-1]):
            lines = lines[:-1]

        return "\n".join(lines).strip()

    async def enter_administrator(self, password: str, timeout: float = 10) -> None:
        """Switch the session to administrator mode."""
        await self.send_raw("administrator\r")
        await self.read_until(PASSWORD_PATTERN, timeout=timeout)
        await self.send_raw(f"{password}\r")
        output = await self.read_until(PROMPT_PATTERN, timeout=timeout)
        if not ADMIN_PROMPT_PATTERN.search(output):
            raise CommandRejectedError(
                "Administrator authentication failed",
                command="administrator",
                output=output,
            )


class RTXShell(RemoteShell):
    """Yamaha RTX router shell via SSH CLI."""

    # Error patterns that indicate a refused line
    ERROR_PATTERNS = [
        r"^%?\s*Error:",
        r"^Command failed:",
        r"Invalid parameter",
        r"Permission denied",
        r"Connection timeout",
        r"already exists",
        r"not found",
    ]

    def __init__(self, device_id: str, config: DeviceConfig):
        super().__init__(device_id, config)
        self._ssh: Optional[RTXSSH] = None
        self._admin = False

    @property
    def host(self) -> str:
        return self.config.host

    def _has_error(self, output: str) -> Optional[str]:
        """Return the first line of ``output`` that reports an error."""
        for line in output.split("\n"):
            line_stripped = line.strip()
            if not line_stripped:
                continue
            for pattern in self.ERROR_PATTERNS:
                if re.search(pattern, line_stripped, re.IGNORECASE):
                    return line_stripped
        return None

    @with_retry(max_attempts=3, min_wait=2, max_wait=10)
    @timed("connect")
    async def connect(self) -> bool:
        """Connect to the router and prepare the session."""
        logger.info(f"Connecting to RTX {self.device_id} at {self.host}")

        self._ssh = RTXSSH(
            self.host,
            self.config.port,
            self.config.username,
            self.config.get_password(),
            timeout=self.config.timeout,
        )
        await self._ssh.connect()
        await self._ssh.send_command("console character ascii", timeout=self.config.timeout)
        await self._ssh.send_command("console lines infinity", timeout=self.config.timeout)

        self._connected = True
        self._admin = False
        logger.info(f"Connected to {self.device_id}")
        return True

    async def disconnect(self) -> None:
        """Disconnect from the router."""
        if self._ssh:
            await self._ssh.close()
            self._ssh = None
        self._connected = False
        self._admin = False
        logger.info(f"Disconnected from {self.device_id}")

    async def _prepare(self, timeout: float, admin: bool = True) -> None:
        """Connect and enter administrator mode when needed."""
        try:
            if not self._connected:
                await self.connect()
            if admin and not self._admin:
                await self._ssh.enter_administrator(self.config.get_admin_password(), timeout=timeout)
                self._admin = True
                logger.info(f"Administrator mode on {self.device_id}")
        except SESSION_ERRORS as e:
            await self.disconnect()
            raise TransientIOError(f"Cannot open session to {self.device_id}: {e}") from e

    async def _send(self, line: str, timeout: float) -> str:
        """Send one line, translating session failures to TransientIOError."""
        if not self._ssh:
            raise TransientIOError(f"Not connected to {self.device_id}", command=line)

        start = time.perf_counter()
        try:
            output = await self._ssh.send_command(line, timeout=timeout)
        except SESSION_ERRORS as e:
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.warning(
                f"{'execute':20s} | {self.device_id:15s} | {elapsed:8.2f}ms | "
                f"ERROR | cmd={sanitize_command(line)[:50]} | {e}"
            )
            self._connected = False
            await self.disconnect()
            raise TransientIOError(f"Session to {self.device_id} failed: {e}", command=line) from e

        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.debug(
            f"{'execute':20s} | {self.device_id:15s} | {elapsed:8.2f}ms | "
            f"OK | cmd={sanitize_command(line)[:50]}"
        )
        return output

    async def run_one(self, line: str, timeout: float) -> str:
        """Send one line and check the device's answer."""
        await self._prepare(timeout, admin=not line.startswith("show "))

        output = await self._send(line, timeout)
        error = self._has_error(output)
        if error:
            raise CommandRejectedError(error, command=line, index=0, output=output)
        return output

    async def run_batch(self, lines: list[str], timeout: float) -> str:
        """
        Send lines back to back in one session call.

        Stops at the first refused line. ``TransientIOError.completed`` and
        ``CommandRejectedError.index`` count lines from the start of
        ``lines``.
        """
        await self._prepare(timeout)

        outputs = []
        for index, line in enumerate(lines):
            try:
                output = await self._send(line, timeout)
            except TransientIOError as e:
                e.completed = index
                raise
            error = self._has_error(output)
            if error:
                raise CommandRejectedError(error, command=line, index=index, output=output)
            outputs.append(output)
        return "\n".join(outputs)

    async def save(self) -> None:
        """Save running config to flash."""
        await self.run_one("save", timeout=max(self.config.timeout, 60))
