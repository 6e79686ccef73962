"""
Scheduler configuration.

Reads config/scheduler.yaml (or $FOCUSBLOCKS_CONFIG) into
SchedulerPreferences. Unusable values are logged and replaced by defaults.

Usage:
    from focusblocks.config import load_preferences

    preferences = load_preferences()
"""

import logging
from datetime import datetime, time
from pathlib import Path
from typing import Any, Optional

import yaml

from focusblocks import paths
from focusblocks.errors import ValidationError
from focusblocks.time_truth.models import DEFAULT_SCHEDULER_PREFERENCES, SchedulerPreferences

logger = logging.getLogger(__name__)


def load_config(path: Optional[str] = None) -> dict:
    """
    Load the raw YAML config.

    Raises:
        FileNotFoundError if the file doesn't exist.
        yaml.YAMLError if it is not valid YAML.
        ValueError if it has no 'scheduler' section.
    """
    config_path = Path(path) if path else paths.config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Scheduler config not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f)

    if not data or "scheduler" not in data:
        raise ValueError("scheduler.yaml must have a 'scheduler' key")

    return data


def _parse_clock(value: Any, fallback: time, name: str) -> time:
    if value is None:
        return fallback
    if isinstance(value, time):
        return value
    # YAML reads unquoted 09:00 as sexagesimal minutes
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 24 * 60:
        return time(value // 60, value % 60)
    if isinstance(value, str):
        try:
            return datetime.strptime(value, "%H:%M").time()
        except ValueError:
            pass
    logger.warning(f"Invalid {name}: {value!r}, using {fallback.strftime('%H:%M')}")
    return fallback


def _positive_int(value: Any, fallback: int | None, name: str, allow_zero: bool = False) -> int | None:
    if value is None:
        return fallback
    if isinstance(value, int) and not isinstance(value, bool):
        if value > 0 or (allow_zero and value == 0):
            return value
    logger.warning(f"Invalid {name}: {value!r}, using {fallback}")
    return fallback


def preferences_from_dict(section: dict) -> SchedulerPreferences:
    """Build SchedulerPreferences from the 'scheduler' section, applying defaults."""
    defaults = DEFAULT_SCHEDULER_PREFERENCES
    hours = section.get("working_hours") or {}

    start = _parse_clock(hours.get("start"), defaults.working_hours_start, "working_hours.start")
    end = _parse_clock(hours.get("end"), defaults.working_hours_end, "working_hours.end")
    if end <= start:
        logger.warning(f"working_hours end {end} not after start {start}, using defaults")
        start, end = defaults.working_hours_start, defaults.working_hours_end

    candidate = dict(
        working_hours_start=start,
        working_hours_end=end,
        scheduling_horizon_days=_positive_int(
            section.get("scheduling_horizon_days"),
            defaults.scheduling_horizon_days,
            "scheduling_horizon_days",
            allow_zero=True,
        ),
        timezone=section.get("timezone") or defaults.timezone,
        daily_capacity_minutes=_positive_int(
            section.get("daily_capacity_minutes"), None, "daily_capacity_minutes"
        ),
        buffer_minutes=_positive_int(
            section.get("buffer_minutes"), defaults.buffer_minutes, "buffer_minutes", allow_zero=True
        ),
        default_duration_minutes=_positive_int(
            section.get("default_duration_minutes"),
            defaults.default_duration_minutes,
            "default_duration_minutes",
        ),
    )

    try:
        return SchedulerPreferences(**candidate)
    except ValidationError as e:
        logger.warning(f"Invalid scheduler config ({e}), falling back to default timezone")
        candidate["timezone"] = defaults.timezone
        return SchedulerPreferences(**candidate)


def load_preferences(path: Optional[str] = None) -> SchedulerPreferences:
    """
    Preferences from YAML.

    An explicit path must exist. Without one, a missing default file yields
    the built-in defaults.
    """
    if path is None and not paths.config_path().exists():
        logger.info("No scheduler config found, using defaults")
        return DEFAULT_SCHEDULER_PREFERENCES

    data = load_config(path)
    section = data["scheduler"]
    if not isinstance(section, dict):
        raise ValueError("'scheduler' section must be a mapping")
    return preferences_from_dict(section)


def load_logging_settings(path: Optional[str] = None) -> dict:
    """The optional 'logging' section: {"level": ..., "json": ...}."""
    try:
        data = load_config(path)
    except FileNotFoundError:
        return {"level": "INFO", "json": None}
    section = data.get("logging") or {}
    return {"level": str(section.get("level", "INFO")), "json": section.get("json")}
