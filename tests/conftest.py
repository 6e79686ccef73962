"""
Test configuration: ensures repo root is in sys.path + determinism guards.

This allows tests to import from top-level packages (focusblocks, api, tests).
Every test runs with FOCUSBLOCKS_HOME pointed at a temp directory so nothing
reads or writes the user's real database.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import focusblocks.*, api.*, tests.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.fixtures import UTC_PREFS, fixed_clock, seeded_gateway  # noqa: E402

HOME_DB_ABSOLUTE = Path.home() / ".focusblocks" / "data" / "focusblocks.db"

_original_sqlite_connect = sqlite3.connect


def _guarded_sqlite_connect(database, *args, **kwargs):
    """Intercept sqlite3.connect to block live DB access."""
    if str(database) == str(HOME_DB_ABSOLUTE):
        raise RuntimeError(
            f"DETERMINISM VIOLATION: Test attempted to access live DB at {database}.\n"
            "Use the gateway fixture or tests.fixtures.seeded_gateway instead."
        )
    return _original_sqlite_connect(database, *args, **kwargs)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point app home and DB at a temp dir, and guard the live DB."""
    monkeypatch.setenv("FOCUSBLOCKS_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("FOCUSBLOCKS_DB", raising=False)
    monkeypatch.delenv("FOCUSBLOCKS_CONFIG", raising=False)
    monkeypatch.setattr(sqlite3, "connect", _guarded_sqlite_connect)


@pytest.fixture
def prefs():
    return UTC_PREFS


@pytest.fixture
def clock():
    return fixed_clock()


@pytest.fixture
def gateway(tmp_path):
    gw, _ = seeded_gateway(tmp_path / "scheduler.db")
    return gw


class RecordingSink:
    """Event sink that keeps what it was given."""

    def __init__(self):
        self.events = []

    def emit(self, event_type, description, metadata):
        self.events.append((event_type, description, metadata))

    def types(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def sink():
    return RecordingSink()
