"""
Configuration constants for the knowstore persistent item store.

Values here describe the on-disk state format and where things are
looked up. A few can be overridden through environment variables.
"""

import os
import re
from pathlib import Path

# On-disk format
FORMAT_VERSION = "1.0"
MANIFEST_NAME = "MANIFEST"
DATA_SUFFIX = ".json"

# Items in this dataspace are never persisted
TRANSIENT_DATASPACE = "transient"

# Module names and dataspace names (the latter become file names)
NAME_PATTERN = re.compile(r"[A-Za-z0-9_]+")

# Plugin search order, relative to the plugin root
PLUGIN_SUBDIRS = ("src", "module")

# Mode for a freshly created dump directory
DUMP_DIR_MODE = 0o700

DEFAULT_STATE_DIR = Path(os.getenv("KNOWSTORE_STATE_DIR", "state"))


def plugin_root(state_dir: Path) -> Path:
    """Directory searched for plugins when loading ``state_dir``."""
    override = os.getenv("KNOWSTORE_PLUGIN_ROOT")
    if override:
        return Path(override)
    return Path(state_dir)


def is_valid_name(name: str) -> bool:
    """True if ``name`` is usable as a module or dataspace name."""
    return bool(name) and NAME_PATTERN.fullmatch(name) is not None
