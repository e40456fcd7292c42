"""
Engine settings loaded from an optional YAML file.

Example settings.yaml:

    num_workers: 4        # 1 runs the single-threaded engine
    amount_scale: 4       # decimal places kept when reading amounts
    log_level: WARNING
"""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml

from csv_io import DEFAULT_AMOUNT_SCALE

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SettingsLoadError(Exception):
    """Settings file missing or invalid."""


@dataclass(frozen=True)
class EngineSettings:
    num_workers: int = 1
    amount_scale: int = DEFAULT_AMOUNT_SCALE
    log_level: str = "WARNING"

    @property
    def concurrent(self) -> bool:
        return self.num_workers > 1

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)

    def with_workers(self, num_workers: Optional[int]) -> "EngineSettings":
        """Return a copy with num_workers overridden (None keeps the current value)."""
        if num_workers is None:
            return self
        _validate_positive_int("num_workers", num_workers)
        return replace(self, num_workers=num_workers)


def load_settings(path: Optional[Path] = None) -> EngineSettings:
    """Load settings from a YAML file.

    Args:
        path: settings file; None returns the defaults

    Raises:
        SettingsLoadError: file missing, unparsable, or holding invalid values
    """
    if path is None:
        return EngineSettings()

    if not path.exists():
        raise SettingsLoadError(f"Settings file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SettingsLoadError(f"Failed to parse {path}: {e}") from e

    if data is None:
        return EngineSettings()
    if not isinstance(data, dict):
        raise SettingsLoadError(f"{path} must contain a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(str(key) for key in data if key not in known)
    if unknown:
        raise SettingsLoadError(f"Unknown settings in {path}: {', '.join(unknown)}")

    settings = EngineSettings(**data)

    _validate_positive_int("num_workers", settings.num_workers)
    if not isinstance(settings.amount_scale, int) or isinstance(settings.amount_scale, bool) \
            or settings.amount_scale < 0:
        raise SettingsLoadError(f"amount_scale must be a non-negative integer, got {settings.amount_scale!r}")

    log_level = str(settings.log_level).upper()
    if log_level not in LOG_LEVELS:
        raise SettingsLoadError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {settings.log_level!r}")

    return replace(settings, log_level=log_level)


def _validate_positive_int(name: str, value) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise SettingsLoadError(f"{name} must be a positive integer, got {value!r}")
