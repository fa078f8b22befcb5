# coverage.py
"""
Coverage & consistency analysis over the cross-reference graph.

Runs as a regular pass named ``coverage``: requirement coverage by tasks,
orphan tasks, constant drift and identifier hygiene all become Findings.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from specaudit.config import DEFAULTS, RemediationConfig
from specaudit.models import (
    FINDING,
    HIGH,
    IMPLEMENTS,
    LOW,
    MEDIUM,
    MISSING,
    NAMED_CONSTANT,
    PARTIAL,
    REFERENCES,
    REQUIREMENT,
    SUCCESS_CRITERION,
    TASK,
    ConstantGroup,
    CoverageRow,
    CrossReferenceGraph,
    Document,
    Finding,
    Location,
    Mention,
    identifier_sort_key,
    key_sort_key,
)
from specaudit.utils import document_matches, document_precedence, location_sort_key

logger = logging.getLogger(__name__)

NO_TASKS_ANNOTATION = "no tasks file found"

_SUFFIXED_KEY = re.compile(r"^([A-Z]+)(-?)(\d+)([a-z]+)$")


def has_tasks_document(documents: Sequence[Document], tasks_document: str = "tasks.md") -> bool:
    return any(document_matches(doc.path, tasks_document) for doc in documents)


def coverage_matrix(
    documents: Sequence[Document],
    graph: CrossReferenceGraph,
    tasks_document: str = "tasks.md",
) -> Tuple[CoverageRow, ...]:
    """Requirement/SuccessCriterion -> implementing tasks, one row per node."""
    annotation = "" if has_tasks_document(documents, tasks_document) else NO_TASKS_ANNOTATION
    rows = []
    for node in graph.nodes_of_kind(REQUIREMENT, SUCCESS_CRITERION):
        tasks = sorted({e.source for e in graph.edges_to(node, IMPLEMENTS)}, key=identifier_sort_key)
        referenced = len(graph.edges_to(node, REFERENCES)) + len(graph.edges_from(node, REFERENCES))
        rows.append(CoverageRow(
            identifier=node,
            tasks=tuple(tasks),
            referenced_by=referenced,
            annotation=annotation if not tasks else "",
        ))
    return tuple(rows)


def _locations(mentions: Sequence[Mention]) -> Tuple[Location, ...]:
    return tuple(sorted({m.location for m in mentions}, key=location_sort_key))


def canonical_mention(group: ConstantGroup, precedence: Sequence[str]) -> Mention:
    """Mention whose value wins: highest-precedence document, then earliest line."""
    return min(
        group.mentions,
        key=lambda m: (document_precedence(m.document, precedence), m.document, m.line_range.start),
    )


def next_free_key(graph: CrossReferenceGraph, prefix: str, width: int, taken: set) -> str:
    """Next unused integer key for ``prefix``, e.g. FR-042 after FR-041."""
    highest = 0
    for node in graph.nodes:
        parts = key_sort_key(node.key)
        if parts[0] == prefix:
            highest = max(highest, parts[1])
    for key in taken:
        parts = key_sort_key(key)
        if parts[0] == prefix:
            highest = max(highest, parts[1])
    number = str(highest + 1).zfill(width)
    return f"T{number}" if prefix == "T" else f"{prefix}-{number}"


class CoverageAnalyzer:
    """Built-in pass consuming the graph directly instead of raw text."""

    name = "coverage"

    def __init__(self, cfg: Optional[RemediationConfig] = None):
        self.cfg = cfg or DEFAULTS.remediation

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        findings: List[Finding] = []
        findings.extend(self._coverage_gaps(documents, graph))
        findings.extend(self._orphan_tasks(graph))
        findings.extend(self._inconsistencies(graph))
        findings.extend(self._renumbering(graph))
        return findings

    # ---------- Coverage ----------

    def _coverage_gaps(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        tasks_present = has_tasks_document(documents, self.cfg.tasks_document)
        out = []
        for row in coverage_matrix(documents, graph, self.cfg.tasks_document):
            if row.covered:
                continue
            key = row.identifier.key
            if not tasks_present:
                severity = MEDIUM
                summary = f"{key} has no implementing task ({NO_TASKS_ANNOTATION})"
            elif row.referenced_by == 0:
                severity = HIGH
                summary = f"{key} has no implementing task and is not referenced anywhere else"
            else:
                severity = MEDIUM
                summary = f"{key} has no implementing task"
            out.append(Finding(
                id=f"GAP-{len(out) + 1:03d}",
                pass_name=self.name,
                category="coverage-gap",
                status=MISSING,
                severity=severity,
                locations=_locations(graph.mentions_of(row.identifier)),
                summary=summary,
                recommendation=f"Add a task to {self.cfg.tasks_document} that implements {key}.",
            ))
        return out

    def _orphan_tasks(self, graph: CrossReferenceGraph) -> List[Finding]:
        out = []
        for task in graph.nodes_of_kind(TASK):
            if graph.edges_from(task, IMPLEMENTS, REFERENCES):
                continue
            out.append(Finding(
                id=f"ORPH-{len(out) + 1:03d}",
                pass_name=self.name,
                category="orphan-task",
                status=PARTIAL,
                severity=LOW,
                locations=_locations(graph.mentions_of(task)),
                summary=f"{task.key} does not reference any requirement or success criterion",
                recommendation=f"Link {task.key} to the requirement it serves, or mark it as infrastructure.",
            ))
        return out

    # ---------- Consistency ----------

    def _inconsistencies(self, graph: CrossReferenceGraph) -> List[Finding]:
        out = []
        for group in graph.conflicts:
            out.append(self._drift_finding(group, len(out) + 1))

        # The same identifier defined twice in one document
        for node in sorted(graph.nodes, key=identifier_sort_key):
            if node.kind == NAMED_CONSTANT:
                continue
            by_doc: Dict[str, List[Mention]] = {}
            for mention in graph.mentions_of(node):
                if mention.is_definition:
                    by_doc.setdefault(mention.document, []).append(mention)
            for doc in sorted(by_doc):
                definitions = by_doc[doc]
                if len(definitions) < 2:
                    continue
                lines = ", ".join(str(m.line_range) for m in definitions)
                out.append(Finding(
                    id=f"INC-{len(out) + 1:03d}",
                    pass_name=self.name,
                    category="inconsistency",
                    status=PARTIAL,
                    severity=HIGH,
                    locations=_locations(definitions),
                    summary=f"{node.key} is defined {len(definitions)} times in {doc} (lines {lines})",
                    recommendation=f"Keep one definition of {node.key} in {doc} and renumber the others.",
                ))
        return out

    def _drift_finding(self, group: ConstantGroup, number: int) -> Finding:
        key = group.identifier.key
        described = []
        for value, mentions in group.values:
            where = ", ".join(str(m.location) for m in mentions)
            described.append(f"{value} ({where})")
        canonical = self.canonical_mention(group)
        return Finding(
            id=f"INC-{number:03d}",
            pass_name=self.name,
            category="inconsistency",
            status=PARTIAL,
            severity=HIGH,
            locations=_locations(group.mentions),
            summary=f"{key} has conflicting values: " + "; ".join(described),
            recommendation=(
                f"Use {canonical.identifier.value} from {canonical.document} for {key} in every document."
            ),
        )

    def canonical_mention(self, group: ConstantGroup) -> Mention:
        return canonical_mention(group, self.cfg.precedence)

    # ---------- Identifier hygiene ----------

    def _renumbering(self, graph: CrossReferenceGraph) -> List[Finding]:
        out = []
        taken: set = set()
        for node in sorted(graph.nodes, key=identifier_sort_key):
            if node.kind in (NAMED_CONSTANT, FINDING):
                continue
            m = _SUFFIXED_KEY.match(node.key)
            if not m:
                continue
            new_key = next_free_key(graph, m.group(1), len(m.group(3)), taken)
            taken.add(new_key)
            out.append(Finding(
                id=f"REN-{len(out) + 1:03d}",
                pass_name=self.name,
                category="renumbering",
                status=PARTIAL,
                severity=MEDIUM,
                locations=_locations(graph.mentions_of(node)),
                summary=f"{node.key} uses a letter suffix instead of its own number",
                recommendation=f"Rename {node.key} to {new_key} and update every reference.",
            ))
        return out


def analyze(documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
    return CoverageAnalyzer().detect(documents, graph)
