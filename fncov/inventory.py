"""
Static inventory and execution record files.

The inventory accumulates every instrumented function across one
instrumentation pass. Records are merged in per file and deduplicated by id;
an id that is already present is never overwritten.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from .errors import FncovError

log = logging.getLogger(__name__)

DEFAULT_INVENTORY_FILE = ".fncov.inventory.json"
DEFAULT_EXECUTION_FILE = ".fncov.execution.json"


def make_function_id(name, file, line, column):
    return f"{name}:{file}:{line}:{column}"


@dataclass(frozen=True)
class FunctionRecord:
    id: str
    name: str
    file: str
    line: int
    column: int
    kind: str

    @classmethod
    def create(cls, name, file, line, column, kind):
        return cls(
            id=make_function_id(name, file, line, column),
            name=name,
            file=file,
            line=line,
            column=column,
            kind=str(getattr(kind, "value", kind)),
        )

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            name=data["name"],
            file=data["file"],
            line=int(data["line"]),
            column=int(data["column"]),
            kind=data.get("kind", "function"),
        )

    def to_dict(self):
        return asdict(self)


def _now():
    return datetime.now(timezone.utc).isoformat()


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _read_existing_inventory(path):
    """Existing inventory functions, or an empty list if missing or corrupt."""
    try:
        data = _read_json(path)
        functions = data["functions"]
        if not isinstance(functions, list):
            raise TypeError("'functions' is not a list")
        return functions
    except FileNotFoundError:
        return []
    except (OSError, ValueError, KeyError, TypeError) as e:
        log.warning(f"Inventory {path} is unreadable, starting fresh: {e}")
        return []


def merge_inventory(path, records):
    """Merge ``records`` into the inventory file at ``path``.

    Returns False when the file could not be written; the failure is logged
    and never raised.
    """
    records = list(records)
    if not records:
        return True

    functions = _read_existing_inventory(path)
    by_id = {f.get("id"): f for f in functions if isinstance(f, dict)}

    for record in records:
        existing = by_id.get(record.id)
        if existing is None:
            entry = record.to_dict()
            functions.append(entry)
            by_id[record.id] = entry
        elif existing.get("kind") != record.kind or existing.get("name") != record.name:
            log.debug(f"Function id collision on {record.id}; keeping the first record")

    inventory = {
        "timestamp": _now(),
        "functions": functions,
        "totalFunctions": len(functions),
    }
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(inventory, f, indent=2)
    except OSError as e:
        log.error(f"Failed to write inventory {path}: {e}")
        return False
    return True


def load_inventory(path=DEFAULT_INVENTORY_FILE):
    try:
        data = _read_json(path)
    except FileNotFoundError:
        raise FncovError(
            f"No inventory found at {path}. Run 'fncov run -- <command>' first."
        ) from None
    except (OSError, ValueError) as e:
        raise FncovError(f"Cannot read inventory {path}: {e}") from e

    functions = [FunctionRecord.from_dict(f) for f in data.get("functions", [])]
    return {
        "timestamp": data.get("timestamp"),
        "functions": functions,
        "totalFunctions": data.get("totalFunctions", len(functions)),
    }


def load_execution(path=DEFAULT_EXECUTION_FILE):
    try:
        data = _read_json(path)
    except FileNotFoundError:
        raise FncovError(
            f"No execution data found at {path}. Did the command run any instrumented code?"
        ) from None
    except (OSError, ValueError) as e:
        raise FncovError(f"Cannot read execution data {path}: {e}") from e

    executions = data.get("executions", {})
    return {
        "timestamp": data.get("timestamp"),
        "executions": executions,
        "totalFunctions": data.get("totalFunctions", len(executions)),
        "totalExecutions": data.get("totalExecutions", sum(executions.values())),
    }
