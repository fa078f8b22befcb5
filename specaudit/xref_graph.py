# xref_graph.py
"""
Cross-reference graph construction.

Links same-identifier Mentions across documents into single nodes and
derives typed edges from identifiers that share a line. NamedConstant
mentions are grouped by key to expose value drift between documents.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from specaudit.config import DEFAULTS, GraphConfig
from specaudit.models import (
    CONFLICTING,
    DEPENDS_ON,
    DUPLICATES_VALUE,
    IDENTIFIER_KINDS,
    IMPLEMENTS,
    NAMED_CONSTANT,
    REFERENCES,
    REQUIREMENT,
    SUCCESS_CRITERION,
    TASK,
    ConstantGroup,
    CrossReferenceGraph,
    Document,
    Edge,
    Identifier,
    Mention,
    frozen_counter,
    frozen_nodes,
    identifier_sort_key,
)

logger = logging.getLogger(__name__)

IMPLEMENTABLE = (REQUIREMENT, SUCCESS_CRITERION)


def node_of(mention: Mention) -> Identifier:
    """Graph node for a mention; node identity drops the per-mention value."""
    return Identifier(mention.identifier.kind, mention.identifier.key)


def classify_pair(first: Identifier, second: Identifier) -> Optional[Edge]:
    """Edge implied by two identifiers on one line, ``first`` appearing earlier."""
    if first == second:
        return None
    if NAMED_CONSTANT in (first.kind, second.kind):
        return None
    if first.kind == TASK and second.kind in IMPLEMENTABLE:
        return Edge(first, second, IMPLEMENTS)
    if second.kind == TASK and first.kind in IMPLEMENTABLE:
        return Edge(second, first, IMPLEMENTS)
    if first.kind == TASK and second.kind == TASK:
        return Edge(first, second, DEPENDS_ON)
    return Edge(first, second, REFERENCES)


class GraphBuilder:
    """Builds the read-only CrossReferenceGraph from parsed documents."""

    def __init__(self, cfg: Optional[GraphConfig] = None):
        self.cfg = cfg or DEFAULTS.graph

    def build(self, documents: Sequence[Document]) -> CrossReferenceGraph:
        nodes: Dict[Identifier, List[Mention]] = {}
        edges: Dict[Tuple[Identifier, Identifier, str], Edge] = {}
        warnings: Counter = Counter()

        for doc in documents:
            for anomaly in doc.anomalies:
                if anomaly.startswith("unclassified identifier"):
                    warnings["unclassified-identifier"] += 1
                else:
                    warnings["parse-anomaly"] += 1
            lines = doc.raw_text.splitlines()
            by_line: Dict[int, List[Mention]] = {}
            for mention in doc.mentions:
                if mention.identifier.kind not in IDENTIFIER_KINDS:
                    warnings["unclassified-identifier"] += 1
                    logger.warning("Dropping mention of unknown kind %r in %s", mention.identifier.kind, doc.path)
                    continue
                nodes.setdefault(node_of(mention), []).append(mention)
                by_line.setdefault(mention.line_range.start, []).append(mention)
            for number in sorted(by_line):
                line = lines[number - 1] if number <= len(lines) else ""
                for edge in self._link_line(line, by_line[number]):
                    edges.setdefault((edge.source, edge.target, edge.kind), edge)

        groups = self._constant_groups(nodes)
        for group in groups:
            if len(group.mentions) < 2:
                continue
            flag = CONFLICTING if group.conflicting else None
            edge = Edge(group.identifier, group.identifier, DUPLICATES_VALUE, flag)
            edges[(edge.source, edge.target, edge.kind)] = edge
            if group.conflicting:
                warnings["constant-drift"] += 1
                logger.info(
                    "Constant %s has %d distinct values across documents",
                    group.identifier.key, len(group.values),
                )

        ordered_edges = tuple(sorted(
            edges.values(),
            key=lambda e: (e.kind, identifier_sort_key(e.source), identifier_sort_key(e.target)),
        ))
        graph = CrossReferenceGraph(
            nodes=frozen_nodes(nodes),
            edges=ordered_edges,
            constant_groups=groups,
            warnings=frozen_counter(warnings),
        )
        validate_graph(graph)
        logger.info("Built graph with %d node(s) and %d edge(s)", len(graph.nodes), len(graph.edges))
        return graph

    def _link_line(self, line: str, mentions: List[Mention]) -> Iterable[Edge]:
        linked = sorted(
            (m for m in mentions if m.identifier.kind != NAMED_CONSTANT),
            key=lambda m: m.column,
        )
        if len(linked) < 2:
            return []
        positions = [len(line[:m.column].split()) for m in linked]
        window = self.cfg.token_window
        out: List[Edge] = []

        # Anchor: the first identifier on the line, e.g. "T020 [FR-010, FR-011]"
        anchor = node_of(linked[0])
        for idx in range(1, len(linked)):
            if positions[idx] - positions[0] > window:
                break
            edge = classify_pair(anchor, node_of(linked[idx]))
            if edge:
                out.append(edge)

        # Adjacent pairs, e.g. "FR-010 relates to SC-004 via T021"
        for idx in range(1, len(linked)):
            if positions[idx] - positions[idx - 1] > window:
                continue
            edge = classify_pair(node_of(linked[idx - 1]), node_of(linked[idx]))
            if edge and edge.kind != REFERENCES:
                out.append(edge)
        return out

    def _constant_groups(self, nodes: Dict[Identifier, List[Mention]]) -> Tuple[ConstantGroup, ...]:
        groups = []
        for identifier in sorted((n for n in nodes if n.kind == NAMED_CONSTANT), key=lambda n: n.key):
            by_value: Dict[str, List[Mention]] = {}
            for mention in nodes[identifier]:
                by_value.setdefault(mention.identifier.value or "", []).append(mention)
            groups.append(ConstantGroup(
                identifier=identifier,
                values=tuple((value, tuple(by_value[value])) for value in sorted(by_value)),
            ))
        return tuple(groups)


def validate_graph(graph: CrossReferenceGraph) -> None:
    """Raise ValueError if an edge breaks the graph's structural rules."""
    for edge in graph.edges:
        if edge.kind == IMPLEMENTS:
            if edge.source.kind != TASK or edge.target.kind not in IMPLEMENTABLE:
                raise ValueError(f"implements edge must run Task -> Requirement/SuccessCriterion: {edge}")
        elif edge.source.kind == NAMED_CONSTANT and edge.target.kind == NAMED_CONSTANT:
            if edge.kind != DUPLICATES_VALUE:
                raise ValueError(f"only duplicates-value edges may join constants: {edge}")
        if edge.kind == DUPLICATES_VALUE and NAMED_CONSTANT not in (edge.source.kind, edge.target.kind):
            raise ValueError(f"duplicates-value edge between non-constants: {edge}")


def build(documents: Sequence[Document], cfg: Optional[GraphConfig] = None) -> CrossReferenceGraph:
    return GraphBuilder(cfg).build(documents)
