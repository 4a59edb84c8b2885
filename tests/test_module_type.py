import pytest

from fncov import module_type
from fncov.module_type import ModuleType, classify, parse_module_type


def make_file(root, rel_path):
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x = 1\n")
    return path


def test_no_manifest_is_dynamic(tmp_path):
    assert classify(make_file(tmp_path, "a.py")) is ModuleType.DYNAMIC_LOAD


def test_nearest_manifest_wins(tmp_path):
    (tmp_path / "pyproject.toml").write_text('[tool.fncov]\nmodule-type = "static"\n')
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "pyproject.toml").write_text('[project]\nname = "sub"\n')

    assert classify(make_file(tmp_path, "pkg/a.py")) is ModuleType.STATIC_IMPORT
    assert classify(make_file(tmp_path, "sub/pkg/b.py")) is ModuleType.DYNAMIC_LOAD


def test_malformed_manifest_is_dynamic(tmp_path):
    (tmp_path / "pyproject.toml").write_text("[tool.fncov\nmodule-type = ")
    assert classify(make_file(tmp_path, "a.py")) is ModuleType.DYNAMIC_LOAD


def test_non_table_tool_section_is_dynamic(tmp_path):
    (tmp_path / "pyproject.toml").write_text('tool = "x"\n')
    assert classify(make_file(tmp_path, "a.py")) is ModuleType.DYNAMIC_LOAD


def test_reserved_extension_ignores_manifest(tmp_path):
    (tmp_path / "pyproject.toml").write_text('[tool.fncov]\nmodule-type = "static"\n')
    assert classify(make_file(tmp_path, "gui.pyw")) is ModuleType.DYNAMIC_LOAD


def test_configured_extension_rules(tmp_path):
    path = make_file(tmp_path, "a.py")
    assert classify(path, {".py": "static"}) is ModuleType.STATIC_IMPORT
    assert classify(path, {".py": "bogus"}) is ModuleType.DYNAMIC_LOAD


def test_lookups_are_cached_until_cleared(tmp_path):
    manifest = tmp_path / "pyproject.toml"
    manifest.write_text('[tool.fncov]\nmodule-type = "static"\n')
    path = make_file(tmp_path, "a.py")
    assert classify(path) is ModuleType.STATIC_IMPORT

    manifest.write_text('[tool.fncov]\nmodule-type = "dynamic"\n')
    assert classify(path) is ModuleType.STATIC_IMPORT

    module_type.clear_cache()
    assert classify(path) is ModuleType.DYNAMIC_LOAD


@pytest.mark.parametrize("value, expected", [
    ("static", ModuleType.STATIC_IMPORT),
    (" Static ", ModuleType.STATIC_IMPORT),
    ("dynamic", ModuleType.DYNAMIC_LOAD),
    ("commonjs", None),
    (3, None),
])
def test_parse_module_type(value, expected):
    assert parse_module_type(value) is expected
