# findings.py
"""
Severity normalization and finding deduplication.

Passes report severity either as HIGH/MEDIUM/LOW or as a 1-5 impact score.
Both are folded onto one scale here, then overlapping findings are merged
into CanonicalFindings that keep every source Finding for auditing.
"""

import dataclasses
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from specaudit.config import DEFAULTS, DedupConfig
from specaudit.models import (
    HIGH,
    LOW,
    MEDIUM,
    SEVERITIES,
    SEVERITY_RANK,
    STATUS_RANK,
    CanonicalFinding,
    Finding,
    Location,
)
from specaudit.utils import jaccard, location_overlap_ratio, location_sort_key

logger = logging.getLogger(__name__)

IMPACT_TO_SEVERITY = {5: HIGH, 4: HIGH, 3: MEDIUM, 2: LOW, 1: LOW}

AnyFinding = Union[Finding, CanonicalFinding]


# ==========================
# Severity
# ==========================

def severity_from_impact(score: int) -> str:
    if isinstance(score, bool) or not isinstance(score, int) or score not in IMPACT_TO_SEVERITY:
        raise ValueError(f"impact score must be an integer 1-5, got {score!r}")
    return IMPACT_TO_SEVERITY[score]


def normalize_severity(finding: Finding) -> Finding:
    """
    Return ``finding`` with ``severity`` on the HIGH/MEDIUM/LOW scale.
    An explicit qualitative severity wins over an impact score.
    """
    if finding.severity is not None:
        severity = str(finding.severity).strip().upper()
        if severity not in SEVERITIES:
            raise ValueError(f"finding {finding.id}: unknown severity {finding.severity!r}")
        if severity == finding.severity:
            return finding
        return dataclasses.replace(finding, severity=severity)
    if finding.impact_score is None:
        raise ValueError(f"finding {finding.id}: neither severity nor impact score given")
    return dataclasses.replace(finding, severity=severity_from_impact(finding.impact_score))


def max_severity(severities: Iterable[str]) -> str:
    return max(severities, key=lambda s: SEVERITY_RANK[s])


def meets_threshold(severity: str, threshold: str) -> bool:
    return SEVERITY_RANK[severity] >= SEVERITY_RANK[threshold]


# ==========================
# Ordering
# ==========================

def primary_location(finding: AnyFinding) -> Optional[Location]:
    if not finding.locations:
        return None
    return min(finding.locations, key=location_sort_key)


def finding_sort_key(finding: Finding) -> Tuple:
    """(document, first line, pass, id); findings without locations sort first."""
    loc = primary_location(finding)
    doc, start = (loc.document, loc.line_range.start) if loc else ("", 0)
    return (doc, start, finding.pass_name, finding.id)


def canonical_sort_key(finding: CanonicalFinding) -> Tuple:
    loc = primary_location(finding)
    doc, start = (loc.document, loc.line_range.start) if loc else ("", 0)
    return (doc, start, finding.id)


# ==========================
# Deduplication
# ==========================

class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Lower index stays root so classes keep input order
            self.parent[max(ra, rb)] = min(ra, rb)


def _sources(item: AnyFinding) -> Tuple[Finding, ...]:
    if isinstance(item, CanonicalFinding):
        return item.sources
    return (item,)


def canonicalize(sources: Sequence[Finding]) -> CanonicalFinding:
    """Collapse one equivalence class of Findings into a CanonicalFinding."""
    ordered = sorted(sources, key=lambda f: (f.id, f.pass_name))
    representative = ordered[0]
    locations = sorted({loc for f in ordered for loc in f.locations}, key=location_sort_key)
    recommendations: List[str] = []
    for f in ordered:
        text = (f.recommendation or "").strip()
        if text and text not in recommendations:
            recommendations.append(text)
    return CanonicalFinding(
        id=f"{representative.pass_name}:{representative.id}",
        category=representative.category,
        status=max((f.status for f in ordered), key=lambda s: STATUS_RANK.get(s, 0)),
        severity=max_severity(f.severity for f in ordered),
        locations=tuple(locations),
        summary=representative.summary,
        recommendation="\n".join(recommendations),
        sources=tuple(ordered),
    )


class Deduplicator:
    """Merges findings whose locations overlap and whose summaries agree."""

    def __init__(self, cfg: Optional[DedupConfig] = None):
        self.cfg = cfg or DEFAULTS.dedup

    def is_merge_candidate(self, a: AnyFinding, b: AnyFinding) -> bool:
        if location_overlap_ratio(a.locations, b.locations) <= self.cfg.overlap_ratio:
            return False
        return jaccard(a.summary, b.summary) > self.cfg.summary_similarity

    def deduplicate(self, findings: Iterable[AnyFinding]) -> List[CanonicalFinding]:
        """
        Merge candidates transitively (union-find) until no two results are
        merge candidates any more, so the output is a fixed point and running
        it again returns the same set.
        """
        items: List[AnyFinding] = list(findings)
        for item in items:
            if isinstance(item, Finding) and item.severity not in SEVERITIES:
                raise ValueError(f"finding {item.id} must be severity-normalized before deduplication")

        while True:
            classes = self._classes(items)
            if all(len(members) == 1 for members in classes):
                break
            merged: List[AnyFinding] = []
            for members in classes:
                if len(members) == 1:
                    merged.append(members[0])
                else:
                    merged.append(canonicalize([s for m in members for s in _sources(m)]))
            logger.debug("Deduplication pass merged %d item(s) into %d", len(items), len(merged))
            items = merged

        result = [item if isinstance(item, CanonicalFinding) else canonicalize([item]) for item in items]
        return sorted(result, key=canonical_sort_key)

    def _classes(self, items: List[AnyFinding]) -> List[List[AnyFinding]]:
        uf = _DisjointSet(len(items))
        by_document: Dict[str, List[int]] = {}
        for idx, item in enumerate(items):
            for doc in {loc.document for loc in item.locations}:
                by_document.setdefault(doc, []).append(idx)

        checked = set()
        for indices in by_document.values():
            for i_pos, i in enumerate(indices):
                for j in indices[i_pos + 1:]:
                    if (i, j) in checked:
                        continue
                    checked.add((i, j))
                    if uf.find(i) != uf.find(j) and self.is_merge_candidate(items[i], items[j]):
                        uf.union(i, j)

        classes: Dict[int, List[AnyFinding]] = {}
        for idx, item in enumerate(items):
            classes.setdefault(uf.find(idx), []).append(item)
        return [classes[root] for root in sorted(classes)]


def normalize_findings(findings: Iterable[Finding]) -> List[Finding]:
    return [normalize_severity(f) for f in findings]


def deduplicate(findings: Iterable[AnyFinding], cfg: Optional[DedupConfig] = None) -> List[CanonicalFinding]:
    return Deduplicator(cfg).deduplicate(findings)
