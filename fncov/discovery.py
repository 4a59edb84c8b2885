"""Find the project source files a run should instrument."""

import fnmatch
import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)

BACKUP_SUFFIX = ".fncov-backup"
MAP_SUFFIX = ".fncov.map"

# fncov's own package must never be rewritten (the runtime lives there).
PACKAGE_DIR = Path(__file__).resolve().parent


def should_exclude(rel_path, exclude_patterns):
    """True when any component of ``rel_path`` or the whole path matches a pattern."""
    rel_path = Path(rel_path)
    posix = rel_path.as_posix()
    for pattern in exclude_patterns:
        if "/" in pattern:
            if fnmatch.fnmatch(posix, pattern) or posix.startswith(pattern.rstrip("/") + "/"):
                return True
            continue
        for part in rel_path.parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def _is_own_file(path):
    try:
        Path(path).resolve().relative_to(PACKAGE_DIR)
    except ValueError:
        return False
    return True


def _search_roots(include, root):
    roots = []
    for entry in include:
        candidate = root / entry
        if candidate.is_dir() or candidate.is_file():
            roots.append(candidate)
    if not roots:
        log.debug(f"None of {include} exist under {root}; scanning the project root")
        roots.append(root)
    return roots


def find_project_files(config, root="."):
    """Return sorted absolute paths of the files to instrument."""
    root = Path(root).resolve()
    extensions = {e.lower() for e in config["extensions"]}
    exclude = config["exclude"]
    found = set()

    def consider(full_path):
        full_path = Path(full_path)
        name = full_path.name
        if name.endswith(BACKUP_SUFFIX) or name.endswith(MAP_SUFFIX):
            return
        if full_path.suffix.lower() not in extensions:
            return
        try:
            rel = full_path.relative_to(root)
        except ValueError:
            rel = Path(name)
        if should_exclude(rel, exclude) or _is_own_file(full_path):
            return
        found.add(full_path)

    for search_root in _search_roots(config["include"], root):
        if search_root.is_file():
            consider(search_root)
            continue
        for dirpath, dirs, files in os.walk(search_root):
            rel_dir = Path(dirpath).relative_to(root)
            dirs[:] = [
                d for d in dirs
                if not should_exclude(rel_dir / d, exclude)
                and not _is_own_file(os.path.join(dirpath, d))
            ]
            for fname in files:
                consider(os.path.join(dirpath, fname))

    return sorted(found)


def relative_display_path(path, root="."):
    """Posix path relative to ``root``, as recorded in function ids."""
    path = Path(path).resolve()
    try:
        return path.relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return path.as_posix()
