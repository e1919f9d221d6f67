"""Device inventory management from YAML configuration."""
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config_engine.grammar import Capabilities
from ..config_engine.schema import ExecuteOptions
from ..devices import create_shell, RemoteShell

logger = logging.getLogger(__name__)

# Inventory settings that map onto ExecuteOptions
_OPTION_FIELDS = {
    f.name for f in fields(ExecuteOptions)
    if f.name not in ("dry_run", "cancel_event", "audit_context", "user")
}


class DeviceInventory:
    """Manages the device inventory loaded from YAML config.

    ```yaml
    store_dir: ~/.rtx-sync
    defaults:
      username: admin
      password_env: RTX_PASSWORD
    settings:
      timeout: 30
      max_attempts: 3
      batch: true
    devices:
      rtx-edge:
        host: 192.168.100.1
        model: RTX1210
        capabilities:
          ipsec_tunnel:
            hash: sha
    ```
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config()
        self._config: dict = {}
        self._shells: dict[str, RemoteShell] = {}
        self._load_config()

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "rtx-sync" / "devices.yaml",
            Path("/etc/rtx-sync/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration."""
        with open(self.config_path, encoding="utf-8") as f:
            self._config = yaml.safe_load(f) or {}

        # Apply defaults
        defaults = self._config.get("defaults") or {}
        devices = self._config.get("devices") or {}
        for device_id, device_config in devices.items():
            if device_config is None:
                device_config = devices[device_id] = {}
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value

        unknown = set(self._config.get("settings") or {}) - _OPTION_FIELDS
        for name in sorted(unknown):
            logger.warning(f"Ignoring unknown setting '{name}' in {self.config_path}")

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list((self._config.get("devices") or {}).keys())

    def get_device_config(self, device_id: str) -> dict:
        """Get raw config for a device."""
        devices = self._config.get("devices") or {}
        if device_id not in devices:
            raise KeyError(f"Unknown device: {device_id}")
        return devices[device_id]

    def get_shell(self, device_id: str) -> RemoteShell:
        """Get or create the shell for a device."""
        if device_id not in self._shells:
            config = self.get_device_config(device_id)
            self._shells[device_id] = create_shell(device_id, config)
        return self._shells[device_id]

    def get_capabilities(self, device_id: str) -> Optional[Capabilities]:
        """Per-kind default overrides declared for a device, if any."""
        config = self.get_device_config(device_id)
        overrides = config.get("capabilities")
        if not overrides:
            return None
        return Capabilities(defaults=dict(overrides), model=config.get("model"))

    def execute_options(self, **overrides: Any) -> ExecuteOptions:
        """ExecuteOptions from the ``settings`` block, with call-site overrides."""
        settings = {
            k: v for k, v in (self._config.get("settings") or {}).items()
            if k in _OPTION_FIELDS
        }
        return replace(ExecuteOptions(), **{**settings, **overrides})

    def store_dir(self) -> Optional[Path]:
        """Snapshot directory from the top-level ``store_dir`` key, or None."""
        value = self._config.get("store_dir")
        return Path(value).expanduser() if value else None

    async def close_all(self) -> None:
        """Close all device sessions."""
        for shell in self._shells.values():
            if shell.is_connected:
                await shell.disconnect()
        self._shells.clear()
