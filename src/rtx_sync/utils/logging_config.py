"""Logging configuration for rtx-sync.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing for shell round trips and converge calls

Environment Variables:
    RTXSYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    RTXSYNC_LOG_FILE: Path to log file (default: ~/.rtx-sync/rtx-sync.log)
    RTXSYNC_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    RTXSYNC_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from rtx_sync.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("connect")
    async def connect(self):
        ...

    # Or use context manager for sections:
    async with timed_section("converge", device_id="rtx-edge", kinds=2):
        ...
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("rtxsync.perf")
main_logger = logging.getLogger("rtxsync")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("RTXSYNC_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".rtx-sync" / "rtx-sync.log"
    path_str = os.environ.get("RTXSYNC_LOG_FILE", str(default_path))
    return Path(path_str)


def _rotating_handler(path: Path, formatter: logging.Formatter, max_size_mb: int, backups: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects RTXSYNC_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics
    """
    log_level = get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("RTXSYNC_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("RTXSYNC_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    # File handlers capture everything
    file_handler = _rotating_handler(log_file, main_format, max_size_mb, backup_count)
    perf_log_file = log_file.parent / "rtx-sync-perf.log"
    perf_handler = _rotating_handler(perf_log_file, perf_format, max_size_mb, backup_count)

    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(console_handler)
    main_logger.addHandler(file_handler)

    # Module loggers live under the package name
    package_logger = logging.getLogger("rtx_sync")
    package_logger.setLevel(logging.DEBUG)
    package_logger.addHandler(console_handler)
    package_logger.addHandler(file_handler)

    # perf_logger is a child of main_logger; keep its lines out of the main file
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False
    perf_logger.addHandler(perf_handler)
    perf_logger.addHandler(console_handler)

    main_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")
    perf_logger.info(f"Performance logging to: {perf_log_file}")


def _perf_line(operation: str, device_id: Optional[str], elapsed: float, status: str, extra: str = "") -> str:
    msg = f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | {status}"
    if extra:
        msg += f" | {extra}"
    return msg


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "connect", "read", "apply")
        device_id: Optional device identifier (can also be inferred from self.device_id)

    Usage:
        @timed("connect")
        async def connect(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], 'device_id'):
                dev_id = args[0].device_id

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, dev_id, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000  # ms
            perf_logger.info(_perf_line(operation, dev_id, elapsed, "OK"))
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], 'device_id'):
                dev_id = args[0].device_id

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, dev_id, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, dev_id, elapsed, "OK"))
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Args:
        operation: Name of the operation
        device_id: Device identifier
        **extra: Additional context to log

    Usage:
        async with timed_section("converge", device_id="rtx-edge", kinds=3):
            await engine.converge_many(...)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except BaseException as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_perf_line(operation, device_id, elapsed, f"FAIL: {e!r}", extra_str))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_perf_line(operation, device_id, elapsed, "OK", extra_str))
