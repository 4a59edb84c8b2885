import json
from textwrap import dedent

import pytest

from fncov.errors import InstrumentationError
from fncov.instrument import IMPORT_STATEMENTS, instrument, instrument_file
from fncov.module_type import ModuleType
from fncov.sourcemap import SourceMap

DYNAMIC = IMPORT_STATEMENTS[ModuleType.DYNAMIC_LOAD]
STATIC = IMPORT_STATEMENTS[ModuleType.STATIC_IMPORT]


def test_function_gets_tracking_call():
    result = instrument("def load(path):\n    return path\n", "app.py")

    assert result.text == (
        f"{DYNAMIC}\n"
        "def load(path):\n"
        '    _fncov_track("load:app.py:1:0")\n'
        "    return path\n"
    )
    assert [f.id for f in result.functions] == ["load:app.py:1:0"]
    assert result.import_added
    assert not result.skipped


def test_static_import_form():
    result = instrument("def f():\n    pass\n", "pkg/mod.py", ModuleType.STATIC_IMPORT)
    assert result.text.splitlines()[0] == STATIC
    assert result.text.splitlines()[0] == "from fncov.runtime import track as _fncov_track"


def test_import_goes_after_docstring_and_future_imports():
    source = dedent('''\
        """Module doc."""
        from __future__ import annotations

        import os


        def f():
            """Doc."""
            return os.sep
    ''')
    result = instrument(source, "app.py")

    lines = result.text.splitlines()
    assert lines[:5] == [
        '"""Module doc."""',
        "from __future__ import annotations",
        "",
        "import os",
        DYNAMIC,
    ]
    assert lines[-3:] == [
        '    """Doc."""',
        '    _fncov_track("f:app.py:7:0")',
        "    return os.sep",
    ]


def test_shebang_stays_first():
    result = instrument("#!/usr/bin/env python\nprint('hi')\n", "tool.py")
    assert result.text == f"#!/usr/bin/env python\n{DYNAMIC}\nprint('hi')\n"


def test_import_line_with_trailing_statement_is_split():
    result = instrument("import os; os.getcwd()\n", "app.py")
    assert result.text == f"import os\n{DYNAMIC}; os.getcwd()\n"


def test_lambda_body_is_wrapped():
    result = instrument("key = lambda p: p.name\n", "app.py")
    assert result.text.splitlines()[1] == 'key = lambda p: _fncov_track("key:app.py:1:6") or (p.name)'
    assert result.functions[0].kind == "lambda"


def test_inline_body():
    result = instrument("def f(): return 1\n", "app.py")
    assert result.text.splitlines()[1] == 'def f(): _fncov_track("f:app.py:1:0"); return 1'


def test_docstring_only_body():
    source = 'def f():\n    """Doc."""\n'
    result = instrument(source, "app.py")
    assert result.text == f'{DYNAMIC}\ndef f():\n    """Doc."""\n    _fncov_track("f:app.py:1:0")\n'


def test_crlf_newlines_are_kept():
    result = instrument("def f():\r\n    return 1\r\n", "app.py")
    assert result.text == (
        f"{DYNAMIC}\r\n"
        "def f():\r\n"
        '    _fncov_track("f:app.py:1:0")\r\n'
        "    return 1\r\n"
    )


def test_methods_and_kinds():
    source = dedent("""\
        class Greeter:
            def __init__(self, name):
                self.name = name

            @staticmethod
            def build():
                return Greeter("x")
    """)
    result = instrument(source, "app.py")
    assert [(f.name, f.kind, f.line, f.column) for f in result.functions] == [
        ("__init__", "method", 2, 4),
        ("build", "method", 6, 4),
    ]


def test_anonymous_functions_are_not_instrumented():
    result = instrument("sorted(data, key=lambda p: p)\n", "app.py")
    assert result.functions == []
    assert result.text.splitlines()[1] == "sorted(data, key=lambda p: p)"


def test_lambda_passed_to_bound_call_takes_binding_name():
    result = instrument("items = sorted(data, key=lambda p: p)\n", "app.py")
    assert [(f.id, f.kind) for f in result.functions] == [("items:app.py:1:25", "lambda")]


def test_each_lambda_recorded_once():
    result = instrument("double = lambda x: x * 2\nhalf = lambda x: x / 2\n", "app.py")
    assert [f.name for f in result.functions] == ["double", "half"]
    assert result.text.count("_fncov_track(") == 2


def test_instrumenting_twice_changes_nothing():
    source = dedent("""\
        def f():
            return 1

        g = lambda: 2
    """)
    first = instrument(source, "app.py")
    second = instrument(first.text, "app.py")

    assert second.text == first.text
    assert second.functions == []
    assert not second.import_added


def test_existing_static_import_is_reused():
    source = f"{STATIC}\n\ndef f():\n    pass\n"
    result = instrument(source, "app.py")
    assert not result.import_added
    assert result.text.count("import track") == 1


@pytest.mark.parametrize("path, source, reason", [
    ("types.pyi", "def f() -> int: ...\n", "type stub file"),
    ("script.py", "global counter\ncounter = 1\n", "module-level global statement"),
    ("startup.py", "get_ipython().run_line_magic('load_ext', 'x')\n", "host-injected global"),
    ("SConstruct.py", "env = DefaultEnvironment()\n", "host-injected global"),
    ("notebook.py", "# %%\nx = 1\n\n# %%\ndef f():\n    return x\n", "notebook cell markers"),
])
def test_script_files_are_skipped(path, source, reason):
    result = instrument(source, path)
    assert result.skipped
    assert reason in result.skip_reason
    assert result.text == source
    assert result.functions == []


def test_script_markers_ignored_when_file_imports():
    source = "import os\n# %%\ndef f():\n    return os.sep\n"
    result = instrument(source, "app.py")
    assert not result.skipped
    assert len(result.functions) == 1


def test_parse_error_names_file():
    with pytest.raises(InstrumentationError) as excinfo:
        instrument("def broken(:\n    pass\n", "src/bad.py")
    assert excinfo.value.file_path == "src/bad.py"
    assert "src/bad.py" in str(excinfo.value)
    assert "parse error" in str(excinfo.value)


def test_output_runs_and_reports_calls(recording_tracker):
    source = dedent('''\
        class Greeter:
            """Says hello."""

            def __init__(self, name):
                self.name = name

            def greet(self):
                """Greeting text."""
                return f"hi {self.name}"

            shout = lambda self: self.greet().upper()
    ''')
    result = instrument(source, "app.py")
    namespace = {}
    exec(compile(result.text, "app.py", "exec"), namespace)

    greeter = namespace["Greeter"]("ann")
    assert greeter.shout() == "HI ANN"
    assert greeter.greet.__doc__ == "Greeting text."
    assert recording_tracker.calls == [
        "__init__:app.py:4:4",
        "shout:app.py:11:12",
        "greet:app.py:7:4",
    ]


def test_static_output_runs(recording_tracker):
    result = instrument("def f(x):\n    return x * 2\n", "app.py", ModuleType.STATIC_IMPORT)
    namespace = {}
    exec(compile(result.text, "app.py", "exec"), namespace)
    assert namespace["f"](3) == 6
    assert recording_tracker.calls == ["f:app.py:1:0"]


def test_inventory_is_merged(tmp_path):
    inventory = tmp_path / "inventory.json"
    instrument("def a():\n    pass\n", "a.py", inventory_path=inventory)
    instrument("def b():\n    pass\n", "b.py", inventory_path=inventory)

    data = json.loads(inventory.read_text())
    assert data["totalFunctions"] == 2
    assert [f["id"] for f in data["functions"]] == ["a:a.py:1:0", "b:b.py:1:0"]


def test_position_map_points_back_to_original():
    result = instrument("def load(path):\n    return path\n", "app.py", source_map=True)
    source_map = SourceMap(result.position_map)

    # generated line 4 is "    return path"
    assert source_map.lookup(4, 4) == ("app.py", 2, 4)
    assert source_map.lookup(4, 11) == ("app.py", 2, 11)
    assert source_map.lookup(2, 4) == ("app.py", 1, 4)


def test_instrument_file_classifies_by_manifest(tmp_path):
    (tmp_path / "pyproject.toml").write_text('[tool.fncov]\nmodule-type = "static"\n')
    path = tmp_path / "pkg" / "mod.py"
    path.parent.mkdir()
    path.write_text("def f():\n    pass\n")

    result = instrument_file(path, display_path="pkg/mod.py")
    assert result.text.startswith(STATIC)
    assert "__import__" not in result.text
    assert result.functions[0].file == "pkg/mod.py"
    # the file on disk is untouched
    assert path.read_text() == "def f():\n    pass\n"
