import textwrap

import pytest

from fncov import module_type, runtime
from fncov.config import DEFAULT_CONFIG, merge_config
from fncov.instrument import get_parser


class RecordingTracker:
    """Stands in for the process tracker: counts calls, never writes files."""

    def __init__(self):
        self.initialized = True
        self.calls = []

    def initialize(self):
        pass

    def record(self, function_id):
        self.calls.append(function_id)


@pytest.fixture(autouse=True)
def _reset_manifest_cache():
    module_type.clear_cache()
    yield
    module_type.clear_cache()


@pytest.fixture
def recording_tracker(monkeypatch):
    fake = RecordingTracker()
    monkeypatch.setattr(runtime, "tracker", fake)
    return fake


@pytest.fixture
def parse():
    def _parse(source):
        return get_parser().parse(textwrap.dedent(source).encode("utf-8")).root_node
    return _parse


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Empty project directory that is also the working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def write_file(project):
    def _write(rel_path, content=""):
        path = project / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def config():
    return merge_config(DEFAULT_CONFIG, {})
