"""
Source instrumentation for fncov.

Rewrites a Python file so every nameable function reports its entry to the
runtime tracker, and records each instrumented function in the static
inventory. Parsing uses tree-sitter's Python grammar; rewriting is done by
inserting text at node byte offsets, so formatting and comments survive and an
exact position map can be emitted.

    def load(path):                 def load(path):
        '''Read a file.'''              '''Read a file.'''
        return open(path)   --->        _fncov_track("load:app.py:1:0")
                                        return open(path)

    key = lambda p: p.name   --->   key = lambda p: _fncov_track("key:app.py:4:6") or (p.name)

CRITICAL: the tracker is bound as ``_fncov_track``. A double-underscore name
would be mangled inside class bodies and fail with NameError at run time.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import tree_sitter_languages

from .errors import InstrumentationError
from .identify import ANONYMOUS, FUNCTION_NODE_TYPES, identify, node_text, string_value
from .inventory import FunctionRecord, merge_inventory
from .module_type import ModuleType, classify
from .sourcemap import SourceMapBuilder

log = logging.getLogger(__name__)

TRACKER_NAME = "_fncov_track"
TRACKER_MODULE = "fncov.runtime"

IMPORT_STATEMENTS = {
    ModuleType.STATIC_IMPORT: f"from {TRACKER_MODULE} import track as {TRACKER_NAME}",
    ModuleType.DYNAMIC_LOAD: (
        f'{TRACKER_NAME} = __import__("{TRACKER_MODULE}", fromlist=["track"]).track'
    ),
}

STUB_EXTENSIONS = {".pyi"}

IMPORT_NODE_TYPES = {"import_statement", "import_from_statement", "future_import_statement"}
DYNAMIC_LOAD_CALLEES = {"__import__", "importlib.import_module"}
STRING_NODE_TYPES = {"string", "concatenated_string"}

# Globals injected by hosts that exec a file as a script instead of importing
# it (IPython startup files, SCons SConscript/SConstruct files).
HOST_GLOBALS = {
    "get_ipython", "__IPYTHON__",
    "SConscript", "Import", "Export", "Return", "DefaultEnvironment",
}

# "# %%" / "# In[3]:" cells of notebook-exported scripts
NOTEBOOK_CELL_RE = re.compile(r"^#\s*(?:%%|In\[[\d ]*\]:?)", re.MULTILINE)

_TRACKER_NAME_RE = re.compile(rf"\b{TRACKER_NAME}\b")

_parser = None


@dataclass
class InstrumentResult:
    text: str
    functions: List[FunctionRecord] = field(default_factory=list)
    position_map: Optional[dict] = None
    skip_reason: Optional[str] = None
    import_added: bool = False

    @property
    def skipped(self):
        return self.skip_reason is not None


def get_parser():
    global _parser
    if _parser is None:
        _parser = tree_sitter_languages.get_parser("python")
    return _parser


# --- Tree helpers ---

def _walk(node):
    """Pre-order traversal without recursion (deeply nested files exist)."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _first_error(root):
    for node in _walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node
    return None


def _statements(block):
    return [c for c in block.named_children if c.type != "comment"]


def _is_bare_string(stmt):
    return (
        stmt.type == "expression_statement"
        and stmt.named_child_count == 1
        and stmt.named_children[0].type in STRING_NODE_TYPES
    )


def _is_tracking_call(node):
    """``_fncov_track("<literal>")``"""
    if node is None or node.type != "call":
        return False
    if node_text(node.child_by_field_name("function")) != TRACKER_NAME:
        return False
    arguments = node.child_by_field_name("arguments")
    if arguments is None:
        return False
    args = [a for a in arguments.named_children if a.type != "comment"]
    return len(args) == 1 and string_value(args[0]) is not None


def _line_start(source_bytes, offset):
    return source_bytes.rfind(b"\n", 0, offset) + 1


def _char_column(source_bytes, offset):
    start = _line_start(source_bytes, offset)
    return len(source_bytes[start:offset].decode("utf-8", errors="replace"))


# --- File-level eligibility ---

def _has_module_load(root):
    for node in _walk(root):
        if node.type in IMPORT_NODE_TYPES:
            return True
        if node.type == "call":
            callee = node_text(node.child_by_field_name("function"))
            if callee in DYNAMIC_LOAD_CALLEES:
                return True
    return False


def skip_reason(root, source_text, file_path):
    """Why a file must be left alone, or None when it can be instrumented.

    A file that already loads any module is module-shaped and never skipped
    by the script-marker rules.
    """
    if Path(file_path).suffix.lower() in STUB_EXTENSIONS:
        return "type stub file"
    if _has_module_load(root):
        return None

    for stmt in root.named_children:
        if stmt.type == "global_statement":
            return "module-level global statement"
    for node in _walk(root):
        if node.type == "identifier" and node_text(node) in HOST_GLOBALS:
            return f"references host-injected global '{node_text(node)}'"
    if NOTEBOOK_CELL_RE.search(source_text):
        return "notebook cell markers"
    return None


# --- Tracker import ---

def _imports_tracker(root):
    for stmt in root.named_children:
        if stmt.type in IMPORT_NODE_TYPES and _TRACKER_NAME_RE.search(node_text(stmt)):
            return True
        if stmt.type == "expression_statement" and stmt.named_child_count == 1:
            expr = stmt.named_children[0]
            if expr.type == "assignment" and node_text(expr.child_by_field_name("left")) == TRACKER_NAME:
                return True
    return False


def _import_insertion(root, source_bytes, statement, newline):
    """(offset, text) placing ``statement`` after the docstring/import prologue."""
    statements = _statements(root)

    last_index = -1
    for index, stmt in enumerate(statements):
        if _is_bare_string(stmt) or stmt.type in IMPORT_NODE_TYPES:
            last_index = index
            continue
        break

    if last_index < 0:
        if statements:
            # Leading comments (shebang, encoding declaration) stay on top.
            return statements[0].start_byte, statement + newline
        separator = "" if not source_bytes or source_bytes.endswith(b"\n") else newline
        return len(source_bytes), separator + statement + newline

    last = statements[last_index]
    following = statements[last_index + 1] if last_index + 1 < len(statements) else None
    if following is not None and following.start_point[0] == last.end_point[0]:
        # "import os; main()" -- split the line so main() sees the tracker
        return last.end_byte, newline + statement

    line_end = source_bytes.find(b"\n", last.end_byte)
    if line_end < 0:
        return len(source_bytes), newline + statement + newline
    return line_end + 1, statement + newline


# --- Function bodies ---

def _colon_row(node, body):
    row = node.start_point[0]
    for child in node.children:
        if child.start_byte >= body.start_byte:
            break
        if child.type == ":":
            row = child.start_point[0]
    return row


def _split_docstring(body):
    statements = _statements(body)
    if statements and _is_bare_string(statements[0]):
        return statements[0], statements[1:]
    return None, statements


def _already_instrumented(node):
    body = node.child_by_field_name("body")
    if body is None:
        return False
    if node.type == "lambda":
        return body.type == "boolean_operator" and _is_tracking_call(body.child_by_field_name("left"))
    _, rest = _split_docstring(body)
    if not rest:
        return False
    first = rest[0]
    return (
        first.type == "expression_statement"
        and first.named_child_count == 1
        and _is_tracking_call(first.named_children[0])
    )


def _def_insertion(node, source_bytes, call, newline):
    """Insert ``call`` as the first statement, after the docstring if any."""
    body = node.child_by_field_name("body")
    colon_row = _colon_row(node, body)
    docstring, rest = _split_docstring(body)

    if rest:
        anchor = rest[0]
        indent = source_bytes[_line_start(source_bytes, anchor.start_byte):anchor.start_byte]
        if anchor.start_point[0] != colon_row and not indent.strip():
            return anchor.start_byte, call + newline + indent.decode("utf-8")
        return anchor.start_byte, call + "; "

    # Body holds nothing but a docstring.
    indent = source_bytes[_line_start(source_bytes, docstring.start_byte):docstring.start_byte]
    if docstring.start_point[0] != colon_row and not indent.strip():
        return docstring.end_byte, newline + indent.decode("utf-8") + call
    return docstring.end_byte, "; " + call


def _lambda_insertions(node, call):
    """A lambda body cannot hold statements: ``expr`` becomes ``call or (expr)``.

    The tracker returns None, so the lambda still returns the value of expr.
    """
    body = node.child_by_field_name("body")
    return [(body.start_byte, f"{call} or ("), (body.end_byte, ")")]


# --- Output ---

def _apply_edits(source_bytes, edits, file_path, with_map):
    edits = sorted(edits, key=lambda e: e[0])
    pieces = []
    cursor = 0
    for offset, text in edits:
        pieces.append((True, source_bytes[cursor:offset].decode("utf-8")))
        pieces.append((False, text))
        cursor = offset
    pieces.append((True, source_bytes[cursor:].decode("utf-8")))

    output = "".join(text for _, text in pieces)
    if not with_map:
        return output, None

    builder = SourceMapBuilder(source=file_path, file=file_path)
    gen_line = gen_col = src_line = src_col = 0
    for original, text in pieces:
        if not text:
            continue
        for index, part in enumerate(text.split("\n")):
            if index:
                gen_line, gen_col = gen_line + 1, 0
                if original:
                    src_line, src_col = src_line + 1, 0
            if original and part:
                builder.add_mapping(gen_line, gen_col, src_line, src_col)
            gen_col += len(part)
            if original:
                src_col += len(part)
    return output, builder.to_dict()


# --- Public API ---

def instrument(source_text, file_path, module_type=ModuleType.DYNAMIC_LOAD, *,
               inventory_path=None, source_map=False):
    """Rewrite ``source_text`` so every nameable function reports its entry.

    ``file_path`` is the path recorded in function ids. When ``inventory_path``
    is given, the discovered functions are merged into that inventory file.
    Raises InstrumentationError if the source does not parse.
    """
    file_path = str(file_path)
    module_type = ModuleType(module_type)
    source_bytes = source_text.encode("utf-8")

    tree = get_parser().parse(source_bytes)
    root = tree.root_node
    if root.has_error:
        bad = _first_error(root)
        row, col = bad.start_point if bad is not None else (0, 0)
        raise InstrumentationError(file_path, f"parse error at line {row + 1}, column {col}")

    reason = skip_reason(root, source_text, file_path)
    if reason:
        log.debug(f"Not instrumenting {file_path}: {reason}")
        return InstrumentResult(text=source_text, skip_reason=reason)

    newline = "\r\n" if b"\r\n" in source_bytes else "\n"
    edits = []
    import_added = False
    if not _imports_tracker(root):
        edits.append(_import_insertion(root, source_bytes, IMPORT_STATEMENTS[module_type], newline))
        import_added = True

    functions = []
    for node in _walk(root):
        # the "lambda" keyword token shares its type with the lambda node
        if not node.is_named or node.type not in FUNCTION_NODE_TYPES:
            continue
        name, kind = identify(node)
        if name == ANONYMOUS or _already_instrumented(node):
            continue

        record = FunctionRecord.create(
            name, file_path, node.start_point[0] + 1, _char_column(source_bytes, node.start_byte), kind
        )
        functions.append(record)

        call = f"{TRACKER_NAME}({json.dumps(record.id)})"
        if node.type == "lambda":
            edits.extend(_lambda_insertions(node, call))
        else:
            edits.append(_def_insertion(node, source_bytes, call, newline))

    text, position_map = _apply_edits(source_bytes, edits, file_path, source_map)

    if inventory_path is not None:
        merge_inventory(inventory_path, functions)

    return InstrumentResult(
        text=text,
        functions=functions,
        position_map=position_map,
        import_added=import_added,
    )


def read_source(path):
    """Read a source file keeping its newline style."""
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise InstrumentationError(str(path), f"cannot read file: {e}") from e


def instrument_file(path, *, display_path=None, module_type=None, inventory_path=None,
                    source_map=False, extension_types=None):
    """Read, classify and instrument one file. The file itself is not modified."""
    path = Path(path)
    source_text = read_source(path)
    if module_type is None:
        module_type = classify(path, extension_types)
    return instrument(
        source_text,
        display_path or path.as_posix(),
        module_type,
        inventory_path=inventory_path,
        source_map=source_map,
    )
