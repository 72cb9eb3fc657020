"""
split_config -- single public entrypoint for split settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files
    directly.

Architecture position:
    Configuration.  Sits above ``split_kernel`` and below
    ``split_services``.  The kernel MUST NEVER import from
    ``split_config``; ``SplitSettings.to_policy()`` translates settings
    into the kernel's ``ValidationPolicy``.

Failure modes:
    - ``FileNotFoundError`` -- no settings file for the requested profile.
    - ``ValueError`` -- unknown keys or invalid values.

Every successful ``get_active_settings()`` call emits a
``split_settings_loaded`` log entry with the profile and checksum.
"""

from __future__ import annotations

from pathlib import Path

from split_config.loader import compute_checksum, load_settings, parse_settings
from split_config.schema import SplitSettings
from split_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default settings profiles directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_settings(
    profile: str = "default",
    config_dir: Path | None = None,
    path: Path | None = None,
) -> SplitSettings:
    """The ONLY public settings entrypoint.

    Args:
        profile: Name of a settings file under ``config_dir`` (without
            the ``.yaml`` suffix).
        config_dir: Override path to the settings directory.
            Defaults to split_config/sets/.
        path: Explicit settings file; takes precedence over ``profile``.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If the settings fail validation.
    """
    settings_path = path or (config_dir or _DEFAULT_CONFIG_DIR) / f"{profile}.yaml"
    if not settings_path.is_file():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    settings = load_settings(settings_path, profile=profile if path is None else None)

    _logger.info(
        "split_settings_loaded",
        extra={
            "profile": settings.profile,
            "checksum": settings.checksum,
            "currency": settings.currency,
        },
    )
    return settings


__all__ = [
    "SplitSettings",
    "compute_checksum",
    "get_active_settings",
    "parse_settings",
]
