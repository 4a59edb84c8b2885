"""
Configuration loading.

Looked up in the project root, first match wins:
  fncov.config.json, .fncovrc.json, then [tool.fncov] in pyproject.toml.

Values merge onto DEFAULT_CONFIG: ``include`` and ``extensions`` replace the
defaults, ``exclude`` extends them, nested sections merge key by key.
"""

import copy
import json
import logging
import tomllib
from pathlib import Path

from .errors import ConfigError
from .inventory import DEFAULT_EXECUTION_FILE, DEFAULT_INVENTORY_FILE

log = logging.getLogger(__name__)

CONFIG_FILES = ("fncov.config.json", ".fncovrc.json")
PYPROJECT = "pyproject.toml"

DEFAULT_CONFIG = {
    "include": ["src", "lib", "app"],
    "exclude": [
        ".git", ".hg", ".venv", "venv", "env", ".tox", ".nox", "__pycache__",
        "site-packages", "node_modules", "build", "dist", ".eggs", "*.egg-info",
        "docs", "test", "tests", "conftest.py", "test_*.py", "*_test.py",
        "setup.py",
    ],
    "extensions": [".py", ".pyw"],
    "output": {
        "inventory": DEFAULT_INVENTORY_FILE,
        "execution": DEFAULT_EXECUTION_FILE,
        "report": "fncov-report.json",
    },
    "thresholds": {
        "coverage": None,
        "max_unused": None,
    },
    "report": {
        "format": "terminal",
        "verbose": False,
        "show_all": False,
    },
    "source_maps": {
        "enabled": True,
        "emit": False,
    },
    # extension -> "static" | "dynamic"
    "module_types": {},
}

SECTIONS = ("output", "thresholds", "report", "source_maps")

# camelCase spellings accepted for JSON configs
KEY_ALIASES = {
    "maxUnused": "max_unused",
    "showAll": "show_all",
    "sourceMaps": "source_maps",
    "moduleTypes": "module_types",
    "max-unused": "max_unused",
    "show-all": "show_all",
    "source-maps": "source_maps",
    "module-types": "module_types",
}

REPORT_FORMATS = ("terminal", "json", "both")


def _normalize_keys(data):
    if not isinstance(data, dict):
        return data
    return {KEY_ALIASES.get(k, k): _normalize_keys(v) for k, v in data.items()}


def _load_json(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a JSON object")
    return data


def _load_pyproject(path):
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    section = data.get("tool", {}).get("fncov")
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigError(f"[tool.fncov] in {path} must be a table")
    # module-type belongs to the module-type classifier, not to the run config
    return {k: v for k, v in section.items() if k != "module-type"}


def load_config_file(path):
    path = Path(path)
    if path.name == PYPROJECT or path.suffix == ".toml":
        return _load_pyproject(path) or {}
    if path.suffix == ".json":
        return _load_json(path)
    raise ConfigError(f"Unsupported config file type: {path.suffix or path.name}")


def find_config_file(root="."):
    root = Path(root)
    for name in CONFIG_FILES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def merge_config(defaults, custom):
    custom = _normalize_keys(custom or {})
    merged = copy.deepcopy(defaults)

    for key in ("include", "extensions"):
        if custom.get(key):
            merged[key] = list(custom[key])
    if custom.get("exclude"):
        merged["exclude"] = merged["exclude"] + [e for e in custom["exclude"] if e not in merged["exclude"]]
    for section in SECTIONS:
        if isinstance(custom.get(section), dict):
            merged[section].update(custom[section])
    if isinstance(custom.get("module_types"), dict):
        merged["module_types"].update(custom["module_types"])

    unknown = set(custom) - set(DEFAULT_CONFIG)
    if unknown:
        log.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
    return merged


def validate_config(config):
    thresholds = config.get("thresholds", {})
    coverage = thresholds.get("coverage")
    if coverage is not None:
        if not isinstance(coverage, (int, float)) or isinstance(coverage, bool):
            raise ConfigError("Coverage threshold must be a number")
        if coverage < 0 or coverage > 100:
            raise ConfigError("Coverage threshold must be between 0 and 100")

    max_unused = thresholds.get("max_unused")
    if max_unused is not None:
        if not isinstance(max_unused, int) or isinstance(max_unused, bool):
            raise ConfigError("max_unused threshold must be an integer")
        if max_unused < 0:
            raise ConfigError("max_unused threshold must be >= 0")

    fmt = config.get("report", {}).get("format")
    if fmt not in REPORT_FORMATS:
        raise ConfigError(f"report.format must be one of {', '.join(REPORT_FORMATS)}")

    for ext, value in config.get("module_types", {}).items():
        if value not in ("static", "dynamic"):
            raise ConfigError(f"module_types[{ext!r}] must be 'static' or 'dynamic'")


def load_config(config_path=None, root="."):
    """Load, merge and validate the configuration for a project root."""
    if config_path is not None:
        if not Path(config_path).is_file():
            raise ConfigError(f"Config file not found: {config_path}")
        custom = load_config_file(config_path)
        log.debug(f"Loaded config from {config_path}")
    else:
        found = find_config_file(root)
        if found is not None:
            custom = load_config_file(found)
            log.debug(f"Loaded config from {found}")
        else:
            pyproject = Path(root) / PYPROJECT
            custom = _load_pyproject(pyproject) if pyproject.is_file() else None
            if custom is not None:
                log.debug(f"Loaded config from {pyproject} [tool.fncov]")

    config = merge_config(DEFAULT_CONFIG, custom)
    validate_config(config)
    return config
