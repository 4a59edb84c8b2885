"""fncov: function-level execution coverage for Python codebases."""

__version__ = "0.1.0"
