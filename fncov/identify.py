"""
Function identification for instrumentation.

Resolves a human-readable name and a kind tag for a function-like syntax node.
Works on any node object exposing ``type``, ``parent``, ``text`` and
``child_by_field_name`` (tree-sitter nodes do). The upward name search only
follows ``parent`` links and never holds on to the nodes it visits.

Name resolution, first match wins:
  1. the function's own name (``def name``)
  2. a method key: ``def`` in a class body, or the string key of the dict
     entry a lambda is the value of
  3. the target of the binding the node directly initializes (``x = lambda``)
  4. a bounded walk out through call wrappers (``x = wrap(lambda: ...)``)
  5. ``ANONYMOUS``
"""

import re
from enum import Enum
from typing import Optional, Protocol, Tuple

ANONYMOUS = "anonymous"

# Node types that can carry a tracking call
FUNCTION_NODE_TYPES = {"function_definition", "lambda"}

# Wrappers the upward walk may pass through on its way to a binding
WRAPPER_NODE_TYPES = {
    "argument_list", "call", "keyword_argument", "parenthesized_expression",
}

# The walk stops at these: a binding beyond them names a different scope
BOUNDARY_NODE_TYPES = {
    "function_definition", "lambda", "class_definition", "module", "block",
    "decorated_definition",
}

MAX_WALK_DEPTH = 16

_STRING_LITERAL_RE = re.compile(r"^[rRuU]?(\"\"\"|'''|\"|')(.*)\1$", re.DOTALL)


class FunctionKind(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    LAMBDA = "lambda"


class SyntaxNode(Protocol):
    type: str
    parent: Optional["SyntaxNode"]
    text: bytes

    def child_by_field_name(self, name: str) -> Optional["SyntaxNode"]:
        ...


# --- Helpers ---

def node_text(node):
    """Decode node text; always go through node.text, never byte slicing."""
    if node is None:
        return None
    return node.text.decode("utf-8")


def _identifier(node):
    """Return the identifier text if ``node`` is a plain name."""
    if node is not None and node.type == "identifier":
        return node_text(node)
    return None


def string_value(node):
    """Return the content of a plain string literal node, or None.

    Prefixed byte and f-strings do not count as literals here.
    """
    if node is None or node.type != "string":
        return None
    match = _STRING_LITERAL_RE.match(node_text(node))
    if not match:
        return None
    return match.group(2)


def _enclosing_class_body(node):
    """True when a function_definition sits directly in a class body."""
    parent = node.parent
    if parent is not None and parent.type == "decorated_definition":
        parent = parent.parent
    return (
        parent is not None
        and parent.type == "block"
        and parent.parent is not None
        and parent.parent.type == "class_definition"
    )


def _binding_name(parent, child):
    """Name bound by ``parent`` when ``child`` is its initializer, else None."""
    if parent.type == "assignment":
        if parent.child_by_field_name("right") == child:
            return _identifier(parent.child_by_field_name("left"))
        return None
    if parent.type == "named_expression":
        if parent.child_by_field_name("value") == child:
            return _identifier(parent.child_by_field_name("name"))
        return None
    return None


def _key_name(parent, child):
    """Dict entry key naming a lambda value: ``{"key": lambda: ...}``."""
    if parent.type != "pair" or parent.child_by_field_name("value") != child:
        return None
    key = parent.child_by_field_name("key")
    value = string_value(key)
    if value and value.isidentifier():
        return value
    return _identifier(key)


# --- Public API ---

def function_kind(node: SyntaxNode) -> FunctionKind:
    if node.type == "lambda":
        return FunctionKind.LAMBDA
    if _enclosing_class_body(node):
        return FunctionKind.METHOD
    return FunctionKind.FUNCTION


def function_name(node: SyntaxNode) -> str:
    own = _identifier(node.child_by_field_name("name"))
    if own:
        return own

    parent = node.parent
    if parent is None:
        return ANONYMOUS

    key = _key_name(parent, node)
    if key:
        return key

    # Bounded upward walk: the first step covers a direct binding, later
    # steps see through call wrappers.
    child = node
    for _ in range(MAX_WALK_DEPTH):
        if parent is None or parent.type in BOUNDARY_NODE_TYPES:
            break
        name = _binding_name(parent, child)
        if name:
            return name
        if parent.type not in WRAPPER_NODE_TYPES:
            break
        child, parent = parent, parent.parent

    return ANONYMOUS


def identify(node: SyntaxNode) -> Tuple[str, FunctionKind]:
    """Resolve ``(name, kind)`` for a function-like node."""
    return function_name(node), function_kind(node)
