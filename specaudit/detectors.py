# detectors.py
"""
Detector passes.

A Detector is any object with a ``name`` and a pure
``detect(documents, graph) -> list[Finding]``. This module holds the
lexicon-based passes shipped with the engine and the name -> pass registry
used by the CLI.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from specaudit.config import DEFAULTS, AppConfig
from specaudit.coverage import CoverageAnalyzer
from specaudit.errors import PassConfigurationError
from specaudit.llm_detector import build_llm_detector, make_client
from specaudit.models import (
    HIGH,
    MEDIUM,
    MISSING,
    PARTIAL,
    CrossReferenceGraph,
    Document,
    Finding,
    LineRange,
    Location,
)
from specaudit.pass_catalog import llm_pass_names
from specaudit.utils import collapse_whitespace, document_precedence, location_sort_key, tokenize

logger = logging.getLogger(__name__)


@runtime_checkable
class Detector(Protocol):
    name: str

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        ...


class FunctionDetector:
    """Adapts a plain function to the Detector interface."""

    def __init__(self, name: str, func: Callable[[Sequence[Document], CrossReferenceGraph], List[Finding]]):
        self.name = name
        self.func = func

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        return self.func(documents, graph)


# ==========================
# Line iteration
# ==========================

def prose_documents(documents: Sequence[Document]) -> List[Document]:
    """Markdown-like documents; contracts written in code are skipped."""
    return [d for d in documents if d.path.endswith((".md", ".docx"))]


def prose_lines(document: Document):
    """Yield (line number, text) outside fenced code blocks, skipping headings."""
    in_fence = False
    for number, line in enumerate(document.raw_text.splitlines(), 1):
        stripped = line.strip()
        if stripped.startswith(("```", "~~~")):
            in_fence = not in_fence
            continue
        if in_fence or not stripped or stripped.startswith("#"):
            continue
        yield number, line


# ==========================
# Ambiguity
# ==========================

# (phrase, severity, clarification)
VAGUE_TERMS: Tuple[Tuple[str, str, str], ...] = (
    ("as needed", HIGH, "Define the specific conditions that trigger this action."),
    ("appropriate", HIGH, "Define measurable criteria for 'appropriate'."),
    ("timely", HIGH, "Specify an exact time threshold."),
    ("fast", HIGH, "Specify a measurable target, e.g. a latency budget in ms."),
    ("quickly", HIGH, "Specify a measurable target, e.g. a latency budget in ms."),
    ("instant", HIGH, "Specify the maximum acceptable delay in ms."),
    ("responsive", MEDIUM, "Define the response-time budget."),
    ("smooth", MEDIUM, "Define a frame-rate or latency target."),
    ("reasonable", HIGH, "Define the quantitative threshold."),
    ("adequate", HIGH, "Define the minimum acceptable criteria."),
    ("user-friendly", MEDIUM, "Define specific usability criteria."),
    ("intuitive", MEDIUM, "Define specific usability criteria."),
    ("scalable", MEDIUM, "Define the target scale: item counts, document sizes."),
    ("efficient", MEDIUM, "Define the efficiency metric: CPU, memory, latency."),
    ("large", MEDIUM, "Give the size bound as a number."),
    ("robust", MEDIUM, "Define failure scenarios and the expected recovery."),
    ("flexible", MEDIUM, "Define what specifically needs to be configurable."),
    ("etc.", HIGH, "Enumerate all items explicitly."),
    ("and/or", MEDIUM, "Clarify inclusive OR vs exclusive OR."),
    ("if possible", MEDIUM, "State whether the behaviour is required."),
    ("gracefully", MEDIUM, "Describe the observable fallback behaviour."),
)


def _term_pattern(term: str) -> re.Pattern:
    escaped = re.escape(term)
    prefix = r"(?<![\w-])" if term[0].isalnum() else ""
    suffix = r"(?![\w-])" if term[-1].isalnum() else ""
    return re.compile(prefix + escaped + suffix, re.IGNORECASE)


VAGUE_PATTERNS = tuple((_term_pattern(term), term, severity, hint) for term, severity, hint in VAGUE_TERMS)


def find_vague_terms(line: str) -> List[Tuple[int, str, str, str]]:
    """(column, term, severity, clarification) for every vague term in ``line``."""
    hits = []
    for pattern, term, severity, hint in VAGUE_PATTERNS:
        for m in pattern.finditer(line):
            hits.append((m.start(), term, severity, hint))
    return sorted(hits)


class AmbiguityDetector:
    """Flags vague, unmeasurable wording line by line."""

    name = "ambiguity"

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        out: List[Finding] = []
        for doc in sorted(prose_documents(documents), key=lambda d: d.path):
            for number, line in prose_lines(doc):
                seen = set()
                for _, term, severity, hint in find_vague_terms(line):
                    if term in seen:
                        continue
                    seen.add(term)
                    out.append(Finding(
                        id=f"AMB-{len(out) + 1:03d}",
                        pass_name=self.name,
                        category="ambiguity",
                        status=PARTIAL,
                        severity=severity,
                        locations=(Location(doc.path, LineRange(number, number)),),
                        summary=f"Vague term '{term}' in {doc.path} line {number}",
                        recommendation=hint,
                    ))
        return out


# ==========================
# Underspecification
# ==========================

# (pattern, impact score)
PLACEHOLDER_MARKERS = (
    (re.compile(r"\[NEEDS CLARIFICATION[^\]]*\]", re.IGNORECASE), 4),
    (re.compile(r"\b(?:TBD|TBC)\b"), 3),
    (re.compile(r"\?\?\?"), 3),
    (re.compile(r"\b(?:TODO|FIXME)\b"), 2),
)


class UnderspecificationDetector:
    """Flags placeholders left in the documents; reports 1-5 impact scores."""

    name = "underspecification"

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        out: List[Finding] = []
        for doc in sorted(prose_documents(documents), key=lambda d: d.path):
            for number, line in prose_lines(doc):
                hits = [(m.start(), m.group(0), score) for pat, score in PLACEHOLDER_MARKERS for m in pat.finditer(line)]
                if not hits:
                    continue
                _, marker, score = max(hits, key=lambda h: (h[2], -h[0]))
                out.append(Finding(
                    id=f"U-{len(out) + 1:03d}",
                    pass_name=self.name,
                    category="underspecification",
                    status=MISSING,
                    severity=None,
                    impact_score=score,
                    locations=(Location(doc.path, LineRange(number, number)),),
                    summary=f"Placeholder {marker} left in {doc.path} line {number}",
                    recommendation="Replace the placeholder with the decided behaviour or value.",
                ))
        return out


# ==========================
# Duplication
# ==========================

_LIST_PREFIX = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+(?:\[[ xX]\]\s*)?")


def _normalized_statement(line: str) -> str:
    text = _LIST_PREFIX.sub("", line)
    text = text.replace("**", "").replace("`", "")
    return collapse_whitespace(text).lower()


class DuplicationDetector:
    """Flags prose statements repeated verbatim at several locations."""

    name = "duplication"

    def __init__(self, min_tokens: int = 8, precedence: Optional[Sequence[str]] = None):
        self.min_tokens = min_tokens
        self.precedence = tuple(precedence or DEFAULTS.remediation.precedence)

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        occurrences: Dict[str, List[Location]] = {}
        for doc in prose_documents(documents):
            for number, line in prose_lines(doc):
                if line.lstrip().startswith("|"):
                    continue
                statement = _normalized_statement(line)
                if len(tokenize(statement)) < self.min_tokens:
                    continue
                occurrences.setdefault(statement, []).append(Location(doc.path, LineRange(number, number)))

        groups = []
        for statement, locations in occurrences.items():
            if len(locations) < 2:
                continue
            ordered = sorted(
                locations,
                key=lambda loc: (document_precedence(loc.document, self.precedence),) + location_sort_key(loc),
            )
            groups.append((ordered, statement))
        groups.sort(key=lambda g: location_sort_key(g[0][0]))

        out: List[Finding] = []
        for locations, statement in groups:
            keep = locations[0]
            cross_document = len({loc.document for loc in locations}) > 1
            excerpt = statement if len(statement) <= 80 else statement[:77] + "..."
            out.append(Finding(
                id=f"DUP-{len(out) + 1:03d}",
                pass_name=self.name,
                category="duplication",
                status=PARTIAL,
                severity=None,
                impact_score=3 if cross_document else 2,
                locations=tuple(sorted(locations, key=location_sort_key)),
                summary=f"Statement repeated at {len(locations)} locations: \"{excerpt}\"",
                recommendation=f"Keep the statement at {keep} and reference it from the other locations.",
            ))
        return out


# ==========================
# Registry
# ==========================

def _builtin_factories(cfg: AppConfig) -> Dict[str, Callable[[], Detector]]:
    return {
        "coverage": lambda: CoverageAnalyzer(cfg.remediation),
        "ambiguity": AmbiguityDetector,
        "underspecification": UnderspecificationDetector,
        "duplication": lambda: DuplicationDetector(precedence=cfg.remediation.precedence),
    }


def available_passes() -> List[str]:
    return sorted(_builtin_factories(DEFAULTS)) + llm_pass_names()


def resolve_passes(names: Sequence[str], cfg: Optional[AppConfig] = None, client=None) -> List[Detector]:
    """
    Build Detector instances for pass names. ``llm-*`` names need a
    google-genai client; one is created from the environment when omitted.
    """
    cfg = cfg or DEFAULTS
    factories = _builtin_factories(cfg)
    llm_names = set(llm_pass_names())

    seen = set()
    for name in names:
        if name in seen:
            raise PassConfigurationError(f"pass {name} requested twice")
        seen.add(name)
        if name not in factories and name not in llm_names:
            raise PassConfigurationError(
                f"unknown pass {name!r}; available: {', '.join(available_passes())}"
            )

    detectors: List[Detector] = []
    for name in names:
        if name in factories:
            detectors.append(factories[name]())
            continue
        if client is None:
            client = make_client(cfg.llm)
        detectors.append(build_llm_detector(name, client, cfg.llm))
    logger.info("Resolved passes: %s", ", ".join(d.name for d in detectors))
    return detectors
