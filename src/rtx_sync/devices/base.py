"""Base remote-shell abstraction for CLI-only appliances."""
import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class DeviceConfig:
    """Configuration for a managed router."""
    name: str
    host: str
    type: str = "rtx"
    port: int = 22
    username: str = "admin"
    password: Optional[str] = None
    password_env: str = "RTX_PASSWORD"
    admin_password: Optional[str] = None
    admin_password_env: str = "RTX_ADMIN_PASSWORD"
    model: Optional[str] = None
    timeout: int = 30
    retries: int = 3
    retry_delay: float = 2

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    def get_admin_password(self) -> str:
        """Get administrator password, falling back to the login password."""
        if self.admin_password:
            return self.admin_password
        return os.environ.get(self.admin_password_env, "") or self.get_password()


class RemoteShell(ABC):
    """Line-oriented command session to one device.

    Implementations serialize everything over a single session. They raise
    ``TransientIOError`` when the session breaks (with the number of lines
    known to have completed) and ``CommandRejectedError`` with the index of
    the offending line when the device refuses one.
    """

    supports_batch: bool = True

    def __init__(self, device_id: str, config: Optional[DeviceConfig] = None):
        self.device_id = device_id
        self.config = config
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    async def connect(self) -> bool:
        """Establish the session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session."""
        pass

    @abstractmethod
    async def run_batch(self, lines: list[str], timeout: float) -> str:
        """Send several lines in one round trip and return the combined output."""
        pass

    @abstractmethod
    async def run_one(self, line: str, timeout: float) -> str:
        """Send one line and return its output."""
        pass

    @abstractmethod
    async def save(self) -> None:
        """Persist the running configuration."""
        pass

    async def show(self, command: str, timeout: float = 30) -> str:
        """Run a read-only command."""
        return await self.run_one(command, timeout)

    # Context manager support
    async def __aenter__(self):
        if not self._connected:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False
