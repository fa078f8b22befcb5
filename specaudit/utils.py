# utils.py
"""
Shared utility functions for the specification analysis pipeline.
Consolidates text normalization, ordering and markdown rendering helpers.
"""

import fnmatch
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from specaudit.models import Location


# ==========================
# Ordering
# ==========================

def location_sort_key(location: Location) -> Tuple:
    return (location.document, location.line_range.start, location.line_range.end)


def document_matches(path: str, name: str) -> bool:
    """True if ``path`` is the recognized document ``name`` (markdown or .docx form)."""
    if path == name:
        return True
    if name.endswith(".md") and path == name[:-3] + ".docx":
        return True
    return fnmatch.fnmatch(path, name)


def document_precedence(path: str, precedence: Sequence[str]) -> int:
    """Index of ``path`` in the precedence list; unknown documents sort last."""
    for idx, pattern in enumerate(precedence):
        if document_matches(path, pattern):
            return idx
    return len(precedence)


# ==========================
# Text similarity & overlap
# ==========================

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> List[str]:
    """Lower-cased alphanumeric tokens ("500ms" stays one token)."""
    return _TOKEN_RE.findall((text or "").lower())


def jaccard(a: str, b: str) -> float:
    """Token-set Jaccard similarity of two strings."""
    ta, tb = set(tokenize(a)), set(tokenize(b))
    if not ta and not tb:
        return 1.0
    return len(ta & tb) / len(ta | tb)


def lines_by_document(locations: Iterable[Location]) -> Dict[str, Set[int]]:
    out: Dict[str, Set[int]] = {}
    for loc in locations:
        out.setdefault(loc.document, set()).update(loc.line_range.lines)
    return out


def location_overlap_ratio(a: Iterable[Location], b: Iterable[Location]) -> float:
    """
    Best line-range overlap over the documents both location sets touch:
    intersection length / union length, computed per shared document.
    """
    la, lb = lines_by_document(a), lines_by_document(b)
    best = 0.0
    for doc in la.keys() & lb.keys():
        union = la[doc] | lb[doc]
        if union:
            best = max(best, len(la[doc] & lb[doc]) / len(union))
    return best


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


# ==========================
# Constant values
# ==========================

_NUMBER_WITH_UNIT = re.compile(r"^([-+]?\d+(?:\.\d+)?)([a-z%]*)$")

# unit -> (base unit, multiplier)
_UNIT_SCALE = {
    "ms": ("ms", 1),
    "msec": ("ms", 1),
    "s": ("ms", 1000),
    "sec": ("ms", 1000),
    "secs": ("ms", 1000),
    "seconds": ("ms", 1000),
    "px": ("px", 1),
    "%": ("%", 1),
    "b": ("b", 1),
    "kb": ("b", 1024),
    "mb": ("b", 1024 * 1024),
}

_KEY_SUFFIX_UNITS = (
    ("_MS", "ms"),
    ("_MSEC", "ms"),
    ("_SECONDS", "s"),
    ("_SEC", "s"),
    ("_S", "s"),
    ("_PX", "px"),
    ("_PERCENT", "%"),
    ("_PCT", "%"),
    ("_BYTES", "b"),
    ("_KB", "kb"),
    ("_MB", "mb"),
)


def unit_for_key(key: Optional[str]) -> str:
    """Unit implied by a constant name, e.g. OUTLINE_UPDATE_DEBOUNCE_MS -> ms."""
    upper = (key or "").upper()
    for suffix, unit in _KEY_SUFFIX_UNITS:
        if upper.endswith(suffix):
            return unit
    return ""


def _format_decimal(value: Decimal) -> str:
    return format(value.normalize(), "f")


def normalize_value(raw: str, key: Optional[str] = None) -> str:
    """
    Canonical form of a constant value so that "500ms", "500 ms" and
    "0.5s" compare equal. Non-numeric values are only case/space folded.
    """
    text = (raw or "").strip().strip("`'\"").strip().lower()
    text = re.sub(r"(?<=\d)[,_](?=\d{3})", "", text)
    text = re.sub(r"\s+", "", text)
    match = _NUMBER_WITH_UNIT.match(text)
    if not match:
        return text
    number, unit = match.groups()
    if not unit:
        unit = unit_for_key(key)
    try:
        value = Decimal(number)
    except InvalidOperation:
        return text
    if unit in _UNIT_SCALE:
        base, factor = _UNIT_SCALE[unit]
        value = value * factor
        unit = base
    return f"{_format_decimal(value)}{unit}"


def value_in_unit(normalized: str, unit: str) -> Optional[str]:
    """Express a normalized value as a bare number in ``unit``, e.g. ("500ms", "s") -> "0.5"."""
    match = _NUMBER_WITH_UNIT.match(normalized or "")
    if not match or unit not in _UNIT_SCALE:
        return None
    base, factor = _UNIT_SCALE[unit]
    if match.group(2) != base:
        return None
    return _format_decimal(Decimal(match.group(1)) / factor)


# ==========================
# Table Rendering
# ==========================

def _cell(value) -> str:
    return str(value if value is not None else "").replace("|", "\\|").replace("\n", " ")


def render_table_markdown(headers: Sequence[str], rows: Sequence[Sequence]) -> str:
    """
    Render a table as Markdown.

    Args:
        headers: Column headers
        rows: Row cells; short rows are padded, long rows truncated

    Returns:
        Markdown string for the table, or "" when there is nothing to render
    """
    if not headers and not rows:
        return ""

    lines = []
    if headers:
        lines.append("| " + " | ".join(_cell(h) for h in headers) + " |")
        lines.append("| " + " | ".join(["---"] * len(headers)) + " |")

    for row in rows:
        if headers:
            data = list(row[:len(headers)]) + [""] * max(0, len(headers) - len(row))
        else:
            data = list(row)
        lines.append("| " + " | ".join(_cell(c) for c in data) + " |")

    return "\n".join(lines)


def format_locations(locations: Iterable[Location]) -> str:
    return ", ".join(str(loc) for loc in locations)
