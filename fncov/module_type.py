"""
Module-type classification: decides which shape the injected tracker import takes.

STATIC_IMPORT  from fncov.runtime import track as _fncov_track
DYNAMIC_LOAD   _fncov_track = __import__("fncov.runtime", fromlist=["track"]).track

Extensions reserved for one form always classify as that form. Every other
file defers to the nearest ``pyproject.toml`` above it:

    [tool.fncov]
    module-type = "static"

Anything else (no manifest, no field, unreadable TOML) is DYNAMIC_LOAD.
"""

import logging
import tomllib
from enum import Enum
from pathlib import Path

log = logging.getLogger(__name__)

MANIFEST_NAME = "pyproject.toml"


class ModuleType(str, Enum):
    STATIC_IMPORT = "static"
    DYNAMIC_LOAD = "dynamic"


# Windowed scripts are always launched directly, never imported by a package.
EXTENSION_MODULE_TYPES = {
    ".pyw": ModuleType.DYNAMIC_LOAD,
}

# manifest directory -> module type; lives for the whole process
_manifest_cache = {}


def clear_cache():
    """Forget cached manifest lookups (tests, or after editing a manifest)."""
    _manifest_cache.clear()


def parse_module_type(value):
    """Map a config/manifest value onto a ModuleType, or None if unknown."""
    if isinstance(value, ModuleType):
        return value
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    if value in ("static", "import", "static-import"):
        return ModuleType.STATIC_IMPORT
    if value in ("dynamic", "load", "dynamic-load"):
        return ModuleType.DYNAMIC_LOAD
    return None


def _read_manifest_type(manifest_path):
    try:
        with open(manifest_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.debug(f"Ignoring unreadable manifest {manifest_path}: {e}")
        return ModuleType.DYNAMIC_LOAD

    tool = data.get("tool")
    section = tool.get("fncov") if isinstance(tool, dict) else None
    if not isinstance(section, dict):
        return ModuleType.DYNAMIC_LOAD
    return parse_module_type(section.get("module-type")) or ModuleType.DYNAMIC_LOAD


def _nearest_manifest_type(file_path):
    current = Path(file_path).resolve().parent
    while True:
        cached = _manifest_cache.get(current)
        if cached is not None:
            return cached

        manifest = current / MANIFEST_NAME
        if manifest.is_file():
            module_type = _read_manifest_type(manifest)
            _manifest_cache[current] = module_type
            return module_type

        parent = current.parent
        if parent == current:
            return ModuleType.DYNAMIC_LOAD
        current = parent


def classify(file_path, extension_types=None):
    """Classify ``file_path`` as STATIC_IMPORT or DYNAMIC_LOAD.

    ``extension_types`` adds extension rules on top of the built-in table.
    """
    rules = dict(EXTENSION_MODULE_TYPES)
    for ext, value in (extension_types or {}).items():
        module_type = parse_module_type(value)
        if module_type is not None:
            rules[ext.lower()] = module_type

    ext = Path(file_path).suffix.lower()
    if ext in rules:
        return rules[ext]
    return _nearest_manifest_type(file_path)
