"""
Runtime execution tracker.

Imported by every instrumented module as ``_fncov_track``. Counts calls per
function id in memory and writes the execution record once, when the process
exits. Uncaught exceptions, SIGINT and SIGTERM all end in a regular
interpreter exit, so the exit hook runs on those paths too. Handlers the
program already installed are left in place.

Under ``fncov run`` (``FNCOV_EXECUTION_FILE`` set) the tracker is initialized
on import, so a run that calls no instrumented function still leaves an empty
record behind. Otherwise the first ``track`` call initializes it.

This module runs inside the user's program: it only uses the standard library
and never configures logging.
"""

import atexit
import json
import os
import signal
import sys
import threading
from collections import Counter
from datetime import datetime, timezone

EXECUTION_FILE_ENV = "FNCOV_EXECUTION_FILE"
DEFAULT_EXECUTION_FILE = ".fncov.execution.json"

# How long the exit hook waits for a thread still inside record().
FLUSH_LOCK_TIMEOUT = 1.0


class Tracker:
    """Per-process execution counter.

    Uninitialized until ``initialize()``; after that the exit hook, the SIGTERM
    handler and the excepthook are in place. ``record`` is the only mutator.
    """

    def __init__(self, output_file=None):
        self.output_file = output_file
        self._executions = Counter()
        self._lock = threading.Lock()
        self._initialized = False
        self._flushed = False
        self._previous_excepthook = None

    @property
    def initialized(self):
        return self._initialized

    def initialize(self):
        if self._initialized:
            return
        self._initialized = True

        output_file = self.output_file or os.environ.get(EXECUTION_FILE_ENV) or DEFAULT_EXECUTION_FILE
        # The program may chdir later; pin the location now.
        self.output_file = os.path.abspath(output_file)

        atexit.register(self._flush)

        if threading.current_thread() is threading.main_thread():
            self._install_signal_handlers()

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._handle_uncaught

    def _install_signal_handlers(self):
        # SIGINT's default handler raises KeyboardInterrupt, which already
        # unwinds through atexit. Only SIGTERM's default kills the process
        # without running exit hooks, and only that default is replaced.
        signum = getattr(signal, "SIGTERM", None)
        if signum is not None and signal.getsignal(signum) is signal.SIG_DFL:
            signal.signal(signum, self._handle_signal)

    def record(self, function_id):
        with self._lock:
            self._executions[function_id] += 1

    def snapshot(self):
        """Read-only copy of the current counts."""
        with self._lock:
            return dict(self._executions)

    def clear(self):
        with self._lock:
            self._executions = Counter()

    def execution_record(self, executions=None):
        if executions is None:
            executions = self.snapshot()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "executions": executions,
            "totalFunctions": len(executions),
            "totalExecutions": sum(executions.values()),
        }

    # --- exit paths ---

    def _handle_signal(self, signum, frame):
        # SystemExit unwinds normally, so atexit handlers still run.
        sys.exit(128 + signum)

    def _handle_uncaught(self, exc_type, exc, tb):
        if not issubclass(exc_type, KeyboardInterrupt):
            print(
                f"fncov: uncaught {exc_type.__name__}; execution data is still written to {self.output_file}",
                file=sys.stderr,
            )
        previous = self._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc, tb)

    def _flush(self):
        if self._flushed:
            return
        self._flushed = True

        # A daemon thread may still hold the lock at interpreter exit.
        locked = self._lock.acquire(timeout=FLUSH_LOCK_TIMEOUT)
        try:
            executions = dict(self._executions)
        finally:
            if locked:
                self._lock.release()

        output_file = self.output_file or DEFAULT_EXECUTION_FILE
        try:
            with open(output_file, "w", encoding="utf-8") as f:
                json.dump(self.execution_record(executions), f, indent=2)
        except OSError as e:
            print(f"fncov: failed to write execution data to {output_file}: {e}", file=sys.stderr)


tracker = Tracker()


def track(function_id):
    """Record one call of ``function_id``. Injected into instrumented code."""
    if not tracker.initialized:
        tracker.initialize()
    tracker.record(function_id)


if os.environ.get(EXECUTION_FILE_ENV):
    tracker.initialize()
