"""
Settings loader (``split_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a ``SplitSettings``.  The
single public entry point for runtime settings is
``split_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from split_config.schema import SplitSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data


def parse_settings(data: dict[str, Any], profile: str = "default") -> SplitSettings:
    """
    Parse a ``SplitSettings`` from a dict.  Missing keys take their defaults.

    Raises:
        ValueError: on unknown keys, float tolerances, or invalid values.
    """
    unknown = sorted(set(data) - SplitSettings.setting_names())
    if unknown:
        raise ValueError(f"Unknown settings keys: {unknown}")

    values = dict(data)
    for name in ("percent_tolerance", "default_tax_rate_percent", "default_tip_rate_percent"):
        if name in values:
            # YAML floats go through str so 0.01 stays exactly 0.01.
            values[name] = str(values[name])
    for name in ("amount_tolerance_minor_units", "settlement_epsilon_minor_units", "max_conflict_retries"):
        if name in values and (isinstance(values[name], bool) or not isinstance(values[name], int)):
            raise ValueError(f"{name} must be an integer, got {values[name]!r}")
    for name in ("retry_backoff_seconds", "lock_timeout_seconds"):
        if name in values:
            values[name] = float(values[name])

    settings = SplitSettings(profile=profile, **values)
    return _with_checksum(settings)


def load_settings(path: Path, profile: str | None = None) -> SplitSettings:
    """Load and parse one settings file."""
    return parse_settings(load_yaml_file(path), profile=profile or path.stem)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _with_checksum(settings: SplitSettings) -> SplitSettings:
    object.__setattr__(settings, "checksum", compute_checksum(settings.canonical()))
    return settings
