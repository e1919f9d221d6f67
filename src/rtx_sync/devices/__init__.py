"""Remote shells for managed routers."""
from dataclasses import fields

from .base import RemoteShell, DeviceConfig
from .rtx import RTXShell

__all__ = [
    "RemoteShell",
    "DeviceConfig",
    "RTXShell",
    "DEVICE_TYPES",
    "create_shell",
]

# Device type registry
DEVICE_TYPES = {
    "rtx": RTXShell,
}

_CONFIG_FIELDS = {f.name for f in fields(DeviceConfig)}


def create_shell(device_id: str, config: dict) -> RemoteShell:
    """Factory function to create shell instances.

    Keys of ``config`` that ``DeviceConfig`` does not declare are ignored.
    """
    device_type = config.get("type", "rtx").lower()
    if device_type not in DEVICE_TYPES:
        raise ValueError(f"Unknown device type: {device_type}")

    values = {k: v for k, v in config.items() if k in _CONFIG_FIELDS}
    values.setdefault("name", device_id)
    shell_class = DEVICE_TYPES[device_type]
    return shell_class(device_id, DeviceConfig(**values))
