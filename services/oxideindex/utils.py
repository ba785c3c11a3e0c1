"""
Logging and error handling utilities for the plugin indexer.

Provides:
- Structured logging with rotation
- Custom exception classes
- Retry decorator and backoff helpers
- Interruptible sleeping for graceful shutdown
- Atomic JSON writes and timestamp helpers
"""

from __future__ import annotations

import functools
import json
import os
import random
import sys
import tempfile
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from loguru import logger


# =============================================================================
# Logging Setup
# =============================================================================

# Custom format for pretty console output
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{module}</magenta>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)

# Detailed format for file logs
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)

# Simple format for verbose mode
VERBOSE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    log_file: str = "./logs/oxideindex.log",
    max_size_mb: int = 50,
    backup_count: int = 5,
    log_format: Optional[str] = None,
    verbose: bool = False,
) -> None:
    """
    Configure logging for the indexer.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.
        log_format: Custom log format string.
        verbose: If True, use simplified verbose format.
    """
    logger.remove()

    if log_format is None:
        log_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT

    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
    )

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_path),
        format=FILE_FORMAT,
        level="DEBUG",  # Always log everything to file
        rotation=f"{max_size_mb} MB",
        retention=backup_count,
        compression="zip",
        enqueue=True,
    )

    logger.info(f"Logging configured: level={level}, file={log_file}")


def setup_detailed_logging(
    level: str = "DEBUG",
    log_file: str = "./logs/oxideindex.log",
    show_colors: bool = True,
) -> None:
    """Configure detailed logging with module:function on every console line."""
    logger.remove()

    console_fmt = (
        "<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<blue>{module}</blue>:<cyan>{function}</cyan> | "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=console_fmt,
        level=level,
        colorize=show_colors,
    )

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_path),
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="50 MB",
        retention=5,
        compression="zip",
        enqueue=True,
    )

    logger.info("Detailed logging initialized")


# =============================================================================
# Custom Exceptions
# =============================================================================

class IndexerError(Exception):
    """Base exception for indexer errors."""
    pass


class GitHubAPIError(IndexerError):
    """Non-retryable HTTP error returned by the GitHub API."""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body

    @property
    def is_server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class RateLimitedError(GitHubAPIError):
    """Primary rate limit could not be waited out."""
    def __init__(self, message: str, reset_at: Optional[datetime] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at


class SecondaryRateLimitedError(RateLimitedError):
    """Abuse-detection limit still active after the bounded backoff attempts."""
    pass


class NetworkError(IndexerError):
    """Transport failure that persisted across retries."""
    pass


class AuthError(IndexerError):
    """No usable GitHub credentials."""
    pass


class ConfigError(IndexerError):
    """Error with configuration."""
    pass


class StateError(IndexerError):
    """Persisted crawl state could not be read."""
    pass


class CloneError(IndexerError):
    """git clone of a repository failed."""
    pass


class ShutdownRequested(IndexerError):
    """A termination signal arrived while waiting."""
    pass


# =============================================================================
# Retry Helpers
# =============================================================================

T = TypeVar('T')


def compute_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """Exponential backoff with jitter for a zero-based attempt number."""
    delay = base_delay * (2 ** attempt)
    delay = delay * (0.5 + random.random())
    return min(delay, max_delay)


def retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential: bool = True,
    exceptions: tuple = (Exception,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for retrying failed operations with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts.
        base_delay: Initial delay between retries (seconds).
        max_delay: Maximum delay between retries (seconds).
        exponential: If True, use exponential backoff; otherwise, constant delay.
        exceptions: Tuple of exception types to catch and retry.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        raise

                    if exponential:
                        delay = compute_backoff(attempt, base_delay, max_delay)
                    else:
                        delay = base_delay

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_attempts} failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    time.sleep(delay)
            raise RuntimeError("unreachable")

        return wrapper
    return decorator


# =============================================================================
# Interruptible Sleep
# =============================================================================

class Sleeper:
    """
    Sleep that a signal handler can cut short.

    Every wait in the crawl (rate-limit backoff, pacing, cycle delay) goes
    through one instance so a SIGINT/SIGTERM stops the process promptly.
    """

    def __init__(self):
        self._stop = threading.Event()

    def __call__(self, seconds: float) -> None:
        self.sleep(seconds)

    def sleep(self, seconds: float) -> None:
        if self._stop.is_set():
            raise ShutdownRequested("Shutdown requested")
        if seconds <= 0:
            return
        if self._stop.wait(seconds):
            raise ShutdownRequested("Shutdown requested during wait")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


# =============================================================================
# Time Formatting
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    moment = moment or utc_now()
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_duration(seconds: float) -> str:
    """Format a duration as HH:MM:SS, rounding partial seconds up."""
    total = max(0, int(-(-seconds // 1)))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


# =============================================================================
# Atomic File Writes
# =============================================================================

def atomic_write_json(path: Path | str, payload: Any) -> None:
    """
    Write JSON atomically: temp file in the target directory, then os.replace.

    Readers never observe a partially written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError as cleanup_err:
            logger.debug(f"Failed to remove temp file {tmp_path}: {cleanup_err}")
        raise


def read_json(path: Path | str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# Performance Timing
# =============================================================================

@contextmanager
def timed_operation(operation_name: str, log_level: str = "info"):
    """
    Context manager for timing operations.

    Example:
        with timed_operation("Variant fork-true"):
            process_variant(...)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start_time
        log_func = getattr(logger, log_level)
        log_func(f"{operation_name} completed in {format_duration(elapsed)}")
