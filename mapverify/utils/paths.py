"""Temp root location for fixture directories."""

import os
import tempfile
from pathlib import Path
from typing import Optional


def get_temp_root() -> Path:
    """MAPVERIFY_TEMP_DIR, else a mapverify directory in the system temp dir."""
    env_override = os.environ.get("MAPVERIFY_TEMP_DIR")
    if env_override:
        return Path(env_override).expanduser()
    return Path(tempfile.gettempdir()) / "mapverify"


def ensure_temp_root(temp_root: Optional[Path] = None) -> Path:
    """Create the temp root; fixture directories are created inside it per job."""
    temp_root = temp_root or get_temp_root()
    try:
        temp_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RuntimeError(f"Cannot create temp directory {temp_root}: {e}")

    if not os.access(temp_root, os.W_OK | os.X_OK):
        raise RuntimeError(f"Temp directory {temp_root} is not writable")
    return temp_root
