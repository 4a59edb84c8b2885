"""Exception hierarchy shared by the instrumentation, config and report layers."""


class FncovError(Exception):
    """Base class for errors surfaced to the command line."""


class InstrumentationError(FncovError):
    """A single file could not be parsed or rewritten."""

    def __init__(self, file_path, message):
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path


class ConfigError(FncovError):
    pass


class SourceMapError(FncovError):
    """Malformed or out-of-range position map data."""
