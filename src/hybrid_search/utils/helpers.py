"""
Utility Helper Functions - Common utilities for the hybrid search engine

Part of the Hybrid Search Engine.

License: MIT
"""

import hashlib
import json
import time
import uuid
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)


def generate_hash(text: str, algorithm: str = "sha256") -> str:
    """
    Generate hash for a given text.

    Args:
        text: Text to hash
        algorithm: Hash algorithm to use (md5, sha1, sha256)

    Returns:
        Hexadecimal hash string

    Raises:
        ValueError: If algorithm is not supported
    """
    algorithms = {"md5": hashlib.md5, "sha1": hashlib.sha1, "sha256": hashlib.sha256}

    if algorithm not in algorithms:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hash_func = algorithms[algorithm]
    return hash_func(text.encode("utf-8")).hexdigest()


def stable_json(obj: Any) -> str:
    """Serialize ``obj`` with sorted keys so equal values hash equally."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add when truncating

    Returns:
        Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    if max_length <= len(suffix):
        return suffix[:max_length]

    return text[: max_length - len(suffix)] + suffix


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        remaining_seconds = seconds % 60
        return f"{minutes}m {remaining_seconds:.0f}s"
    else:
        hours = int(seconds // 3600)
        remaining_minutes = int((seconds % 3600) // 60)
        return f"{hours}h {remaining_minutes}m"


class Timer:
    """Simple timer context manager for measuring execution time."""

    def __init__(self, name: str = "Timer"):
        """
        Initialize timer.

        Args:
            name: Timer name for logging
        """
        self.name = name
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self):
        """Start the timer."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop the timer and log duration."""
        self.end_time = time.perf_counter()
        logger.debug(f"{self.name} completed in {format_duration(self.elapsed_time)}")

    @property
    def elapsed_time(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0

        end_time = self.end_time if self.end_time is not None else time.perf_counter()
        return end_time - self.start_time


def create_unique_id(prefix: str = "") -> str:
    """
    Create a unique identifier.

    Args:
        prefix: Optional prefix for the ID

    Returns:
        Unique identifier string
    """
    unique_id = uuid.uuid4().hex

    if prefix:
        return f"{prefix}_{unique_id}"

    return unique_id
