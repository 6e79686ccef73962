from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "FOCUSBLOCKS_HOME"
APP_ENV_DB = "FOCUSBLOCKS_DB"
APP_ENV_CONFIG = "FOCUSBLOCKS_CONFIG"


def app_home() -> Path:
    """
    User-writable home for focusblocks.
    Override with FOCUSBLOCKS_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".focusblocks").resolve()


def db_path() -> Path:
    """
    Canonical DB path.

    Resolution order:
    1. FOCUSBLOCKS_DB env var (explicit override)
    2. <app_home>/data/focusblocks.db, creating the data dir
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    data = app_home() / "data"
    data.mkdir(parents=True, exist_ok=True)
    return data / "focusblocks.db"


def config_path() -> Path:
    """
    Scheduler config file.

    Resolution order:
    1. FOCUSBLOCKS_CONFIG env var
    2. config/scheduler.yaml in the source checkout
    """
    if os.environ.get(APP_ENV_CONFIG):
        return Path(os.environ[APP_ENV_CONFIG]).expanduser().resolve()
    return Path(__file__).parent.parent.resolve() / "config" / "scheduler.yaml"
