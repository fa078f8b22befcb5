# models.py
"""
Data structures for the specification analysis pipeline.
Every object here is an immutable value shared read-only across stages.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


# Identifier kinds
REQUIREMENT = "Requirement"
SUCCESS_CRITERION = "SuccessCriterion"
USER_STORY = "UserStory"
TASK = "Task"
FINDING = "Finding"
NAMED_CONSTANT = "NamedConstant"

IDENTIFIER_KINDS = (REQUIREMENT, SUCCESS_CRITERION, USER_STORY, TASK, FINDING, NAMED_CONSTANT)

# Edge kinds
IMPLEMENTS = "implements"
REFERENCES = "references"
DUPLICATES_VALUE = "duplicates-value"
DEPENDS_ON = "depends-on"

EDGE_KINDS = (IMPLEMENTS, REFERENCES, DUPLICATES_VALUE, DEPENDS_ON)

CONFLICTING = "CONFLICTING"

_KEY_PARTS = re.compile(r"^([A-Za-z_]+?)-?(\d+)(\w*)$")

# Finding status / severity
CLEAR = "Clear"
PARTIAL = "Partial"
MISSING = "Missing"

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

SEVERITIES = (HIGH, MEDIUM, LOW)
SEVERITY_RANK = {LOW: 1, MEDIUM: 2, HIGH: 3}
STATUS_RANK = {CLEAR: 1, PARTIAL: 2, MISSING: 3}


@dataclass(frozen=True, order=True)
class LineRange:
    """Inclusive, 1-based line range."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 1 or self.end < self.start:
            raise ValueError(f"invalid line range {self.start}-{self.end}")

    @property
    def lines(self) -> range:
        return range(self.start, self.end + 1)

    def __str__(self) -> str:
        return str(self.start) if self.start == self.end else f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Section:
    """A heading-delimited block of a document."""
    heading: str                 # "" for text before the first heading
    start_line: int
    end_line: int
    body_text: str


@dataclass(frozen=True)
class Identifier:
    """
    Canonical cross-document token. Equality and hashing use (kind, key)
    only; ``value`` is carried for NamedConstant mentions.
    """
    kind: str
    key: str
    value: Optional[str] = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Mention:
    """One occurrence of an Identifier in one document."""
    identifier: Identifier
    document: str                # document path, relative to the input directory
    line_range: LineRange
    snippet: str
    is_definition: bool = False
    raw_value: Optional[str] = None   # literal text of a constant value as written
    column: int = 0                   # 0-based offset of the token in its line

    @property
    def location(self) -> "Location":
        return Location(self.document, self.line_range)


@dataclass(frozen=True)
class Document:
    path: str
    raw_text: str
    sections: Tuple[Section, ...]
    mentions: Tuple[Mention, ...] = ()
    # Non-fatal parse anomalies, e.g. unclassified identifier tokens
    anomalies: Tuple[str, ...] = ()

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self.raw_text.splitlines())

    def line(self, number: int) -> str:
        lines = self.raw_text.splitlines()
        if 1 <= number <= len(lines):
            return lines[number - 1]
        return ""

    @property
    def line_count(self) -> int:
        return len(self.raw_text.splitlines())


@dataclass(frozen=True)
class Edge:
    source: Identifier
    target: Identifier
    kind: str
    flag: Optional[str] = None   # CONFLICTING on drifting duplicates-value edges


@dataclass(frozen=True)
class ConstantGroup:
    """All mentions of one NamedConstant key, bucketed by normalized value."""
    identifier: Identifier
    values: Tuple[Tuple[str, Tuple[Mention, ...]], ...]

    @property
    def conflicting(self) -> bool:
        return len(self.values) > 1

    @property
    def mentions(self) -> Tuple[Mention, ...]:
        return tuple(m for _, ms in self.values for m in ms)


@dataclass(frozen=True)
class CrossReferenceGraph:
    nodes: Mapping[Identifier, Tuple[Mention, ...]]
    edges: Tuple[Edge, ...]
    constant_groups: Tuple[ConstantGroup, ...] = ()
    warnings: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    def nodes_of_kind(self, *kinds: str) -> Tuple[Identifier, ...]:
        return tuple(sorted((n for n in self.nodes if n.kind in kinds), key=identifier_sort_key))

    def mentions_of(self, identifier: Identifier) -> Tuple[Mention, ...]:
        return self.nodes.get(identifier, ())

    def edges_from(self, identifier: Identifier, *kinds: str) -> Tuple[Edge, ...]:
        return tuple(e for e in self.edges if e.source == identifier and (not kinds or e.kind in kinds))

    def edges_to(self, identifier: Identifier, *kinds: str) -> Tuple[Edge, ...]:
        return tuple(e for e in self.edges if e.target == identifier and (not kinds or e.kind in kinds))

    @property
    def conflicts(self) -> Tuple[ConstantGroup, ...]:
        return tuple(g for g in self.constant_groups if g.conflicting)


@dataclass(frozen=True, order=True)
class Location:
    document: str
    line_range: LineRange

    def __str__(self) -> str:
        return f"{self.document}:{self.line_range}"


@dataclass(frozen=True)
class Finding:
    """
    A single issue emitted by one pass. Passes may express severity either
    as HIGH/MEDIUM/LOW or as a 1-5 ``impact_score``; the normalizer fills
    ``severity`` from the score.
    """
    id: str
    pass_name: str
    category: str
    status: str
    severity: Optional[str]
    locations: Tuple[Location, ...]
    summary: str
    recommendation: str = ""
    impact_score: Optional[int] = None


@dataclass(frozen=True)
class CanonicalFinding:
    """One or more merged Findings; source Findings are kept untouched."""
    id: str
    category: str
    status: str
    severity: str
    locations: Tuple[Location, ...]
    summary: str
    recommendation: str
    sources: Tuple[Finding, ...]

    @property
    def passes(self) -> Tuple[str, ...]:
        return tuple(sorted({f.pass_name for f in self.sources}))

    @property
    def source_ids(self) -> Tuple[str, ...]:
        return tuple(f"{f.pass_name}:{f.id}" for f in self.sources)


@dataclass(frozen=True)
class PassFailure:
    pass_name: str
    error: str
    timed_out: bool = False


@dataclass(frozen=True)
class RemediationEdit:
    id: str
    target_document: str
    line_range: LineRange
    before_text: str
    after_text: str
    depends_on: Tuple[str, ...] = ()
    finding_id: str = ""
    insertion: bool = False      # before_text is empty; after_text goes before line_range.start


@dataclass(frozen=True)
class CoverageRow:
    identifier: Identifier
    tasks: Tuple[Identifier, ...]
    referenced_by: int
    annotation: str = ""

    @property
    def covered(self) -> bool:
        return bool(self.tasks)


@dataclass(frozen=True)
class AnalysisReport:
    documents: Tuple[str, ...]
    findings: Tuple[Finding, ...]
    canonical_findings: Tuple[CanonicalFinding, ...]
    failures: Tuple[PassFailure, ...]
    coverage: Tuple[CoverageRow, ...]
    edits: Tuple[RemediationEdit, ...]
    warnings: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    passes: Tuple[str, ...] = ()
    threshold: str = MEDIUM


def frozen_counter(counter: Counter) -> Mapping[str, int]:
    return MappingProxyType(dict(sorted(counter.items())))


def frozen_nodes(nodes: Dict[Identifier, list]) -> Mapping[Identifier, Tuple[Mention, ...]]:
    return MappingProxyType({k: tuple(v) for k, v in nodes.items()})


def identifier_sort_key(identifier: Identifier):
    return (IDENTIFIER_KINDS.index(identifier.kind) if identifier.kind in IDENTIFIER_KINDS else len(IDENTIFIER_KINDS),
            key_sort_key(identifier.key))


def key_sort_key(key: str) -> Tuple:
    """Order identifier keys numerically, e.g. FR-2 before FR-010 before FR-017a."""
    match = _KEY_PARTS.match(key)
    if not match:
        return (key, 0, "")
    return (match.group(1), int(match.group(2)), match.group(3).lower())
