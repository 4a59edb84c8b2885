"""
Coverage aggregation: joins the static inventory with the execution record.

Every inventory function lands in exactly one of ``executedFunctions`` (its id
is a key of the execution record) or ``unusedFunctions``.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone

from .errors import SourceMapError
from .inventory import FunctionRecord
from .sourcemap import read_source_map

log = logging.getLogger(__name__)


def _as_record(function):
    if isinstance(function, FunctionRecord):
        return function
    return FunctionRecord.from_dict(function)


def coverage_percent(executed_total, inventory_total):
    """Percentage of inventory functions seen running; 0 for an empty inventory."""
    if not inventory_total:
        return 0.0
    return round(executed_total / inventory_total * 100, 2)


class SourceMapResolver:
    """Loads each file's source map once and re-localizes positions through it."""

    def __init__(self, loader=read_source_map):
        self._loader = loader
        self._maps = {}

    def _map_for(self, file_path):
        if file_path not in self._maps:
            try:
                self._maps[file_path] = self._loader(file_path)
            except (SourceMapError, OSError) as e:
                log.debug(f"Source map for {file_path} unusable: {e}")
                self._maps[file_path] = None
        return self._maps[file_path]

    def remap(self, record):
        """Return a relocated copy of ``record``, or None when it has no mapping."""
        source_map = self._map_for(record.file)
        if source_map is None:
            return None
        try:
            source, line, column = source_map.lookup(record.line, record.column)
        except SourceMapError as e:
            log.debug(f"Cannot remap {record.id}: {e}")
            return None
        return replace(record, file=source or record.file, line=line, column=column)


def aggregate(inventory, execution, use_source_maps=False, *, map_resolver=None):
    """Build the coverage report dict for one inventory/execution pair."""
    executions = execution.get("executions", {}) or {}
    functions = [_as_record(f) for f in inventory.get("functions", [])]
    inventory_total = inventory.get("totalFunctions", len(functions))

    remapped_any = False
    if use_source_maps:
        resolver = map_resolver or SourceMapResolver()
        located = []
        for record in functions:
            remapped = resolver.remap(record)
            if remapped is not None:
                remapped_any = True
            located.append(remapped or record)
    else:
        located = functions

    executed, unused = [], []
    for original, record in zip(functions, located):
        if original.id in executions:
            entry = record.to_dict()
            entry["executionCount"] = executions.get(original.id, 0)
            executed.append(entry)
        else:
            unused.append(record.to_dict())

    return {
        "summary": {
            "totalFunctions": inventory_total,
            "executedFunctions": len(executed),
            "unusedFunctions": len(unused),
            "coveragePercent": coverage_percent(execution.get("totalFunctions", 0), inventory_total),
            "totalExecutions": execution.get("totalExecutions", sum(executions.values())),
        },
        "unusedFunctions": unused,
        "executedFunctions": executed,
        "sourceMapsUsed": remapped_any,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
