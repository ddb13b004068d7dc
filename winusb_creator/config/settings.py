"""Persistent settings for WinUSB Creator.

Settings live in a JSON object at ``SETTINGS_PATH``. Missing keys fall back
to ``DEFAULT_SETTINGS``; keys this version does not know are kept so they
survive a save.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from winusb_creator.logging import LoggerFactory


SETTINGS_PATH = Path(
    os.environ.get(
        "WINUSB_CREATOR_SETTINGS_PATH",
        Path.home() / ".config" / "winusb-creator" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_VOLUME_LABEL = "WINUSB"
DEFAULT_SETTLE_DELAY_SECONDS = 2.0
DEFAULT_MIN_DRIVE_SIZE_BYTES = 4_000_000_000

FAT32_LABEL_MAX_LENGTH = 11

DEFAULT_SETTINGS: dict[str, Any] = {
    "volume_label": DEFAULT_VOLUME_LABEL,
    "settle_delay_seconds": DEFAULT_SETTLE_DELAY_SECONDS,
    "min_drive_size_bytes": DEFAULT_MIN_DRIVE_SIZE_BYTES,
}

log = LoggerFactory.for_system()


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    path = path or SETTINGS_PATH
    values = dict(DEFAULT_SETTINGS)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        data = {}
    except (OSError, json.JSONDecodeError) as error:
        log.warning(f"Ignoring unreadable settings file {path}: {error}")
        data = {}

    if isinstance(data, dict):
        values.update(data)
    else:
        log.warning(f"Ignoring settings file {path}: expected a JSON object")
    settings_store.values = values


def save_settings(path: Path | None = None) -> None:
    path = path or SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def volume_label() -> str:
    """Label for the data partition, upper-cased and cut to the FAT32 limit."""
    label = str(get_setting("volume_label") or "").strip().upper()
    return label[:FAT32_LABEL_MAX_LENGTH].rstrip() or DEFAULT_VOLUME_LABEL


def settle_delay_seconds() -> float:
    """Pause between formatting and mounting the new partition."""
    return max(get_float("settle_delay_seconds", DEFAULT_SETTLE_DELAY_SECONDS), 0.0)


def min_drive_size_bytes() -> int:
    return get_int("min_drive_size_bytes", DEFAULT_MIN_DRIVE_SIZE_BYTES)


load_settings()
