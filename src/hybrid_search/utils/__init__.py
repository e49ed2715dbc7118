"""
Utility Functions - Common helper functions and utilities

This module provides utility functions for:
- Stable hashing of queries and options
- Text truncation for result snippets
- Timing and identifier generation

License: MIT
"""

from .helpers import (
    generate_hash,
    stable_json,
    truncate_text,
    format_duration,
    Timer,
    create_unique_id,
)

__all__ = [
    "generate_hash",
    "stable_json",
    "truncate_text",
    "format_duration",
    "Timer",
    "create_unique_id",
]
