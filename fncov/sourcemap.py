"""
Source map v3 support: building maps for rewritten files and re-localizing
positions through maps that already exist on disk.

Positions use 1-based lines and 0-based columns at the API surface, like the
usual source-map consumers. Columns count characters of the decoded text.
"""

import base64
import json
import logging
import re
from bisect import bisect_right
from pathlib import Path

from .errors import SourceMapError

log = logging.getLogger(__name__)

_B64_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_B64_INDEX = {c: i for i, c in enumerate(_B64_CHARS)}

_VLQ_SHIFT = 5
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT
_VLQ_MASK = _VLQ_CONTINUATION - 1

# Python files carry the pragma as a comment: "# sourceMappingURL=data:..."
INLINE_MAP_RE = re.compile(
    r"^\s*(?:#|//)\s*[#@]?\s*sourceMappingURL=data:application/json;"
    r"(?:charset=[\w-]+;)?base64,([A-Za-z0-9+/=]+)\s*$",
    re.MULTILINE,
)


# ---------------------------------------------------------------------------
# Base64 VLQ
# ---------------------------------------------------------------------------

def encode_vlq(value):
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = vlq & _VLQ_MASK
        vlq >>= _VLQ_SHIFT
        if vlq:
            digit |= _VLQ_CONTINUATION
        out.append(_B64_CHARS[digit])
        if not vlq:
            return "".join(out)


def decode_vlq(segment):
    """Decode one comma-free mappings segment into a list of integers."""
    values = []
    value = shift = 0
    for char in segment:
        try:
            digit = _B64_INDEX[char]
        except KeyError:
            raise SourceMapError(f"invalid base64 VLQ character {char!r}") from None
        value += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += _VLQ_SHIFT
            continue
        values.append(-(value >> 1) if value & 1 else value >> 1)
        value = shift = 0
    if shift:
        raise SourceMapError(f"truncated VLQ segment {segment!r}")
    return values


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------

class SourceMapBuilder:
    """Collects (generated -> original) mappings for a single source file.

    All coordinates passed in are 0-based.
    """

    def __init__(self, source, file=None):
        self.source = source
        self.file = file or source
        self._lines = []

    def add_mapping(self, gen_line, gen_column, src_line, src_column):
        while len(self._lines) <= gen_line:
            self._lines.append([])
        self._lines[gen_line].append((gen_column, src_line, src_column))

    def mappings(self):
        prev_src_line = prev_src_col = 0
        encoded_lines = []
        for segments in self._lines:
            prev_gen_col = 0
            encoded = []
            for gen_col, src_line, src_col in sorted(segments):
                encoded.append(
                    encode_vlq(gen_col - prev_gen_col)
                    + encode_vlq(0)
                    + encode_vlq(src_line - prev_src_line)
                    + encode_vlq(src_col - prev_src_col)
                )
                prev_gen_col, prev_src_line, prev_src_col = gen_col, src_line, src_col
            encoded_lines.append(",".join(encoded))
        return ";".join(encoded_lines)

    def to_dict(self):
        return {
            "version": 3,
            "file": self.file,
            "sources": [self.source],
            "names": [],
            "mappings": self.mappings(),
        }


# ---------------------------------------------------------------------------
# Consuming
# ---------------------------------------------------------------------------

class SourceMap:
    """Decoded source map supporting generated -> original lookups."""

    def __init__(self, raw, base_dir=None):
        if not isinstance(raw, dict) or raw.get("version") != 3:
            raise SourceMapError("only version 3 source maps are supported")
        sources = raw.get("sources")
        if not isinstance(sources, list) or not isinstance(raw.get("mappings"), str):
            raise SourceMapError("source map lacks 'sources' or 'mappings'")
        if not all(s is None or isinstance(s, str) for s in sources):
            raise SourceMapError("'sources' must hold strings")
        root = raw.get("sourceRoot")
        if root is not None and not isinstance(root, str):
            raise SourceMapError("'sourceRoot' must be a string")

        root = root or ""
        self.sources = [self._resolve(root, s, base_dir) for s in sources]
        self._lines = self._decode(raw["mappings"])

    @staticmethod
    def _resolve(root, source, base_dir):
        if source is None:
            return None
        path = f"{root.rstrip('/')}/{source}" if root else source
        if base_dir is not None and not Path(path).is_absolute():
            return str(Path(base_dir) / path)
        return path

    def _decode(self, mappings):
        lines = []
        src_index = src_line = src_col = 0
        for line in mappings.split(";"):
            gen_col = 0
            segments = []
            for segment in filter(None, line.split(",")):
                fields = decode_vlq(segment)
                if len(fields) not in (1, 4, 5):
                    raise SourceMapError(f"segment {segment!r} has {len(fields)} fields")
                gen_col += fields[0]
                if len(fields) == 1:
                    continue
                src_index += fields[1]
                src_line += fields[2]
                src_col += fields[3]
                if not 0 <= src_index < len(self.sources):
                    raise SourceMapError(f"source index {src_index} out of range")
                segments.append((gen_col, src_index, src_line, src_col))
            segments.sort()
            lines.append(segments)
        return lines

    def lookup(self, line, column):
        """Map a generated position to ``(source, line, column)``.

        Raises SourceMapError when the position has no mapping.
        """
        if line < 1 or line > len(self._lines):
            raise SourceMapError(f"line {line} is outside the mapped range")
        segments = self._lines[line - 1]
        idx = bisect_right([s[0] for s in segments], column) - 1
        if idx < 0:
            raise SourceMapError(f"no mapping for {line}:{column}")
        gen_col, src_index, src_line, src_col = segments[idx]
        return self.sources[src_index], src_line + 1, src_col + (column - gen_col)


def load_source_map(map_path):
    path = Path(map_path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SourceMapError(f"cannot read {path}: {e}") from e
    return SourceMap(raw, base_dir=path.parent)


def read_source_map(file_path):
    """Find the source map for ``file_path``: ``<file>.map`` or an inline comment.

    Returns None when the file has no map at all.
    """
    file_path = Path(file_path)
    map_path = file_path.with_name(file_path.name + ".map")
    if map_path.exists():
        return load_source_map(map_path)

    try:
        content = file_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = INLINE_MAP_RE.search(content)
    if not match:
        return None
    try:
        raw = json.loads(base64.b64decode(match.group(1)).decode("utf-8"))
    except ValueError as e:
        raise SourceMapError(f"{file_path}: malformed inline source map: {e}") from e
    return SourceMap(raw, base_dir=file_path.parent)


def map_to_original(file_path, line, column):
    """Re-localize one position; returns the input position when unmapped."""
    source_map = read_source_map(file_path)
    if source_map is None:
        return str(file_path), line, column
    source, orig_line, orig_column = source_map.lookup(line, column)
    return source or str(file_path), orig_line, orig_column
