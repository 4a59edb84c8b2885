"""
Instrument-run-restore cycle.

Project files are backed up next to themselves, rewritten in place, the user's
command runs against the rewritten tree, and every backup is restored
afterwards, whatever the command did.
"""

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path

from .discovery import BACKUP_SUFFIX, MAP_SUFFIX, find_project_files, relative_display_path
from .errors import InstrumentationError
from .runtime import EXECUTION_FILE_ENV

log = logging.getLogger(__name__)

# Directory that holds the fncov package, made importable for the child.
INSTALL_DIR = Path(__file__).resolve().parent.parent

# Exit status reported when the command could not be started at all.
COMMAND_NOT_RUN = 127


def backup_path(path):
    return Path(f"{path}{BACKUP_SUFFIX}")


def map_path(path):
    return Path(f"{path}{MAP_SUFFIX}")


def clean(config):
    """Delete the inventory and execution files of a previous run."""
    for key in ("inventory", "execution"):
        path = Path(config["output"][key])
        if path.exists():
            path.unlink()
            log.debug(f"Removed {path}")


def _write_map(path, position_map):
    with open(map_path(path), "w", encoding="utf-8") as f:
        json.dump(position_map, f)


def _instrument_one(path, config, root):
    # Imported here so the runtime-only import path stays free of tree-sitter.
    from .instrument import instrument_file

    emit_maps = config["source_maps"].get("emit", False)
    result = instrument_file(
        path,
        display_path=relative_display_path(path, root),
        inventory_path=config["output"]["inventory"],
        source_map=emit_maps,
        extension_types=config.get("module_types"),
    )
    if result.skipped:
        log.info(f"Skipping {path}: {result.skip_reason}")
        return result

    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(result.text)
    if emit_maps and result.position_map:
        _write_map(path, result.position_map)
    return result


def instrument_in_place(paths, config, root="."):
    """Rewrite ``paths`` in place without backups. Returns instrumented functions count."""
    total = 0
    for path in paths:
        try:
            result = _instrument_one(path, config, root)
        except InstrumentationError as e:
            log.warning(f"Skipping {path}: {e}")
            continue
        total += len(result.functions)
    return total


def restore(backups):
    """Move every backup back over its original; returns the number restored."""
    restored = 0
    for original, backup in backups:
        try:
            shutil.move(str(backup), str(original))
            restored += 1
        except OSError as e:
            log.error(f"Failed to restore {original} from {backup}: {e}")
        emitted = map_path(original)
        if emitted.exists():
            emitted.unlink()
    return restored


def child_environment(config, base=None):
    env = dict(os.environ if base is None else base)
    env[EXECUTION_FILE_ENV] = str(Path(config["output"]["execution"]).resolve())
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = os.pathsep.join([str(INSTALL_DIR)] + ([existing] if existing else []))
    return env


def run_with_instrumentation(command, config, clean_first=True, root="."):
    """Instrument the project, run ``command`` and restore the sources.

    Returns the command's exit status.
    """
    if not command:
        raise ValueError("No command given")

    if clean_first:
        clean(config)

    files = find_project_files(config, root)
    log.info(f"Instrumenting {len(files)} files")

    backups = []
    try:
        instrumented = 0
        for path in files:
            backup = backup_path(path)
            shutil.copy2(path, backup)
            backups.append((path, backup))
            try:
                result = _instrument_one(path, config, root)
            except InstrumentationError as e:
                log.warning(f"Skipping {path}: {e}")
                continue
            instrumented += len(result.functions)
        log.info(f"Instrumented {instrumented} functions; running: {' '.join(command)}")

        try:
            completed = subprocess.run(command, env=child_environment(config))
        except OSError as e:
            log.error(f"Failed to execute {command[0]}: {e}")
            return COMMAND_NOT_RUN

        if not Path(config["output"]["execution"]).exists():
            log.warning("No execution data was written. Did the command run any instrumented code?")
        return completed.returncode
    finally:
        restored = restore(backups)
        log.debug(f"Restored {restored} files")
