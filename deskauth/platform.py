"""Cross-platform utilities for locating configuration and state files."""

import os
import sys
from pathlib import Path

# Platform detection
IS_WINDOWS = sys.platform == "win32"
IS_MACOS = sys.platform == "darwin"


def get_user_config_dir() -> Path | None:
    """Get the per-user configuration directory for this OS.

    - Windows: %APPDATA%
    - macOS: ~/Library/Application Support
    - Other Unix: $XDG_CONFIG_HOME, falling back to ~/.config

    Returns:
        The directory, or None if it cannot be determined
    """
    if IS_WINDOWS:
        appdata = os.environ.get("APPDATA")
        return Path(appdata) if appdata else None

    if IS_MACOS:
        home = _get_home()
        return home / "Library" / "Application Support" if home else None

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg and Path(xdg).is_absolute():
        return Path(xdg)

    home = _get_home()
    return home / ".config" if home else None


def get_state_dir() -> Path | None:
    """Get the service state directory provided by systemd, if any.

    systemd exports $STATE_DIRECTORY for units with StateDirectory= set.
    It may contain several colon-separated paths; the first one is used.
    """
    value = os.environ.get("STATE_DIRECTORY")
    if not value:
        return None
    return Path(value.split(":")[0])


def _get_home() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None
