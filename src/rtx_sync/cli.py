#!/usr/bin/env python3
"""rtx-sync command line.

Usage:
    rtx-sync read <device> <kind> [--devices FILE]
    rtx-sync converge <device> <desired.yaml> [--dry-run] [--devices FILE]
    rtx-sync kinds

The desired-state file maps kind names to lists of field mappings:

    static_route:
      - prefix: 10.0.0.0
        mask: 8
        gateways:
          - target: 192.168.1.254
    dns_server:
      - servers: [8.8.8.8, 1.1.1.1]

Environment:
    RTX_PASSWORD, RTX_ADMIN_PASSWORD    Device credentials
    RTXSYNC_LOG_LEVEL                   Console log level
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from .config import DeviceInventory
from .config_engine import ConfigEngine, TransientIOError
from .config_store import SnapshotStore
from .kinds import DEFAULT_DEPENDENCIES, KIND_REGISTRY
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def load_desired(path: Path) -> dict[str, list]:
    """Load a desired-state YAML file.

    Raises:
        ValueError: If the file is not a mapping of kind -> list
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of kind -> list of entities")
    desired = {}
    for kind, items in data.items():
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValueError(f"{path}: '{kind}' must be a list")
        desired[kind] = items
    return desired


def build_engine(inventory: DeviceInventory, device_id: str) -> ConfigEngine:
    """Engine for one inventory device."""
    return ConfigEngine(
        inventory.get_shell(device_id),
        device_id,
        store=SnapshotStore(inventory.store_dir()),
        capabilities=inventory.get_capabilities(device_id),
        options=inventory.execute_options(),
    )


async def run_read(inventory: DeviceInventory, device_id: str, kind: str) -> int:
    engine = build_engine(inventory, device_id)
    try:
        entities = await engine.read(kind)
    finally:
        await inventory.close_all()
    print(yaml.safe_dump([e.to_dict()["fields"] for e in entities], sort_keys=False), end="")
    return 0


async def run_converge(
    inventory: DeviceInventory,
    device_id: str,
    desired_path: Path,
    dry_run: bool,
    as_json: bool,
) -> int:
    desired = load_desired(desired_path)
    engine = build_engine(inventory, device_id)
    try:
        if dry_run and not as_json:
            print(await engine.preview(desired))
            return 0
        result = await engine.converge_many(desired, dry_run=dry_run)
    finally:
        await inventory.close_all()

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for op in result.applied_ops:
            print(f"applied: {op.describe()}")
        if not result.drift.is_empty:
            print(result.drift.summary())
        for error in result.errors:
            print(f"error: {error}")
    return 0 if result.success else 1


def list_kinds() -> int:
    for name, spec in KIND_REGISTRY.items():
        deps = ", ".join(DEFAULT_DEPENDENCIES.get(name, ()))
        suffix = f" (after {deps})" if deps else ""
        print(f"{name:16s} {spec.identity.value:8s} {spec.update_mode.value:8s} {spec.description}{suffix}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the rtx-sync CLI."""
    parser = argparse.ArgumentParser(
        prog="rtx-sync",
        description="Keep modeled parts of an RTX router configuration in a desired state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show parsed static routes
    rtx-sync read rtx-edge static_route

    # Preview, then apply
    rtx-sync converge rtx-edge desired.yaml --dry-run
    rtx-sync converge rtx-edge desired.yaml
""",
    )
    parser.add_argument(
        "--devices",
        type=str,
        default=None,
        help="Device inventory file (default: ./configs/devices.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    read_parser = sub.add_parser("read", help="Parse one kind from the device")
    read_parser.add_argument("device", help="Device ID from the inventory")
    read_parser.add_argument("kind", choices=sorted(KIND_REGISTRY), help="Entity kind")

    converge_parser = sub.add_parser("converge", help="Apply a desired-state file")
    converge_parser.add_argument("device", help="Device ID from the inventory")
    converge_parser.add_argument("desired", type=Path, help="Desired-state YAML file")
    converge_parser.add_argument("--dry-run", action="store_true", help="Preview without applying")
    converge_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    sub.add_parser("kinds", help="List modeled kinds")

    args = parser.parse_args(argv)

    if args.command == "kinds":
        return list_kinds()

    setup_logging()
    if args.verbose:
        logging.getLogger("rtx_sync").handlers[0].setLevel(logging.DEBUG)

    try:
        inventory = DeviceInventory(args.devices)
        if args.command == "read":
            return asyncio.run(run_read(inventory, args.device, args.kind))
        return asyncio.run(run_converge(
            inventory, args.device, args.desired, args.dry_run, args.json,
        ))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except TransientIOError as e:
        logger.error(f"Device unreachable: {e}")
        return 2
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
