"""
Test fixtures for deterministic scheduling tests.

This module provides:
- builders: Task / FocusBlock factories on a pinned calendar
- seeded_gateway: temp SQLite gateway pre-loaded with tasks and blocks
"""

from .builders import (
    DAY,
    FIXED_NOW,
    OWNER,
    UTC_PREFS,
    at,
    fixed_clock,
    make_block,
    make_task,
    seeded_gateway,
)

__all__ = [
    "DAY",
    "FIXED_NOW",
    "OWNER",
    "UTC_PREFS",
    "at",
    "fixed_clock",
    "make_block",
    "make_task",
    "seeded_gateway",
]
