# remediation.py
"""
Remediation plan generation.

Finalized findings at or above a severity threshold become file-scoped
before/after text edits. Edits are built against a working copy of every
document so that two edits touching the same line chain correctly, then
ordered topologically over document precedence and explicit dependencies.
"""

import heapq
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from specaudit.config import DEFAULTS, RemediationConfig
from specaudit.coverage import canonical_mention, next_free_key
from specaudit.detectors import find_vague_terms
from specaudit.errors import RemediationCycleError
from specaudit.findings import meets_threshold
from specaudit.models import (
    NAMED_CONSTANT,
    REQUIREMENT,
    SEVERITIES,
    SEVERITY_RANK,
    SUCCESS_CRITERION,
    CanonicalFinding,
    ConstantGroup,
    CrossReferenceGraph,
    Document,
    Identifier,
    LineRange,
    Mention,
    RemediationEdit,
    key_sort_key,
)
from specaudit.utils import document_matches, document_precedence, tokenize, unit_for_key, value_in_unit

logger = logging.getLogger(__name__)

CLARIFICATION_MARKER = "[NEEDS CLARIFICATION: {note}]"

_PLACEHOLDER = re.compile(r"\b(?:TBD|TBC|TODO|FIXME)\b|\?\?\?")
_EXISTING_MARKER = re.compile(r"\[NEEDS CLARIFICATION[^\]]*\]", re.IGNORECASE)
_RENAME = re.compile(r"Rename\s+(\S+)\s+to\s+(\S+?)[.,;]?(?:\s|$)")
_QUOTED_TERM = re.compile(r"'([^']+)'")
_LIST_PREFIX = re.compile(r"^(\s*(?:[-*+]|\d+\.)\s+(?:\[[ xX]\]\s*)?)")
_BARE_NUMBER = re.compile(r"^[-+]?\d[\d,_]*(?:\.\d+)?$")
_REQUIREMENT_KEY = re.compile(r"(?<![A-Za-z0-9_-])(?:FR|SC)-\d+[a-z]?(?![A-Za-z0-9_])")
_DEFINITION_PREFIX = re.compile(r"^\s*(?:[-*+]\s*)?(?:\[[ xX]\]\s*)?\*\*[^*]+\*\*\s*[:.-]?\s*")

# Categories whose edits introduce or rename identifiers; generated first so
# that every other edit can depend on them.
_INTRODUCING = ("inconsistency", "renumbering")


# ==========================
# Working copy
# ==========================

class DocumentWorkspace:
    """
    Mutable view of one document in original line coordinates.

    ``slots[n]`` holds the current text lines standing in for original line
    ``n`` (empty once merged into a preceding range edit); ``inserted[n]``
    holds lines inserted before original line ``n``.
    """

    def __init__(self, text: str):
        self.original = text.splitlines()
        self.trailing_newline = text.endswith("\n") or not text
        self.slots: Dict[int, List[str]] = {n: [line] for n, line in enumerate(self.original, 1)}
        self.inserted: Dict[int, List[str]] = {}

    @property
    def line_count(self) -> int:
        return len(self.original)

    def text_of(self, line_range: LineRange) -> str:
        return "\n".join(t for n in line_range.lines for t in self.slots.get(n, []))

    def replace(self, line_range: LineRange, after_text: str) -> None:
        if line_range.end > self.line_count:
            raise ValueError(f"line range {line_range} outside document of {self.line_count} line(s)")
        self.slots[line_range.start] = after_text.split("\n") if after_text else []
        for n in range(line_range.start + 1, line_range.end + 1):
            self.slots[n] = []

    def insert(self, before_line: int, text: str) -> None:
        if not 1 <= before_line <= self.line_count + 1:
            raise ValueError(f"cannot insert before line {before_line} of {self.line_count}")
        self.inserted.setdefault(before_line, []).extend(text.split("\n"))

    def render(self) -> str:
        out: List[str] = []
        for n in range(1, self.line_count + 2):
            out.extend(self.inserted.get(n, []))
            out.extend(self.slots.get(n, []))
        text = "\n".join(out)
        return text + "\n" if out and self.trailing_newline else text


def apply_edits(documents: Sequence[Document], edits: Iterable[RemediationEdit]) -> Dict[str, str]:
    """
    Apply an ordered edit plan to in-memory copies of ``documents``.
    Documents an edit creates start empty. Raises ValueError when an edit's
    before-text no longer matches the working copy.
    """
    spaces = {doc.path: DocumentWorkspace(doc.raw_text) for doc in documents}
    for edit in edits:
        space = spaces.setdefault(edit.target_document, DocumentWorkspace(""))
        if edit.insertion:
            space.insert(edit.line_range.start, edit.after_text)
            continue
        current = space.text_of(edit.line_range)
        if current != edit.before_text:
            raise ValueError(
                f"{edit.id}: {edit.target_document}:{edit.line_range} reads {current!r}, "
                f"expected {edit.before_text!r}"
            )
        space.replace(edit.line_range, edit.after_text)
    return {path: space.render() for path, space in spaces.items()}


# ==========================
# Plan state
# ==========================

class _Plan:
    def __init__(self, documents: Sequence[Document]):
        self.spaces = {doc.path: DocumentWorkspace(doc.raw_text) for doc in documents}
        self.edits: List[RemediationEdit] = []
        self.last_edit: Dict[Tuple[str, int], str] = {}
        self.last_insertion: Dict[str, str] = {}
        # identifier key -> ids of edits that introduce its new value or name
        self.introduced: Dict[str, List[str]] = {}
        # old identifier key -> key it is renumbered to
        self.renamed: Dict[str, str] = {}

    def _next_id(self) -> str:
        return f"EDIT-{len(self.edits) + 1:03d}"

    def text(self, document: str, line_range: LineRange) -> Optional[str]:
        space = self.spaces.get(document)
        if space is None or line_range.end > space.line_count:
            return None
        return space.text_of(line_range)

    def replace(
        self,
        document: str,
        line_range: LineRange,
        after_text: str,
        finding_id: str,
        depends_on: Iterable[str] = (),
    ) -> Optional[RemediationEdit]:
        before = self.text(document, line_range)
        if before is None or before == after_text:
            return None
        deps: Set[str] = set(depends_on)
        for n in line_range.lines:
            previous = self.last_edit.get((document, n))
            if previous:
                deps.add(previous)
        edit = RemediationEdit(
            id=self._next_id(),
            target_document=document,
            line_range=line_range,
            before_text=before,
            after_text=after_text,
            depends_on=tuple(sorted(deps, key=key_sort_key)),
            finding_id=finding_id,
        )
        self.spaces[document].replace(line_range, after_text)
        for n in line_range.lines:
            self.last_edit[(document, n)] = edit.id
        self.edits.append(edit)
        return edit

    def append_line(self, document: str, text: str, finding_id: str,
                    depends_on: Iterable[str] = ()) -> RemediationEdit:
        space = self.spaces.setdefault(document, DocumentWorkspace(""))
        at = space.line_count + 1
        deps: Set[str] = set(depends_on)
        previous = self.last_insertion.get(document)
        if previous:
            deps.add(previous)
        edit = RemediationEdit(
            id=self._next_id(),
            target_document=document,
            line_range=LineRange(at, at),
            before_text="",
            after_text=text,
            depends_on=tuple(sorted(deps, key=key_sort_key)),
            finding_id=finding_id,
            insertion=True,
        )
        space.insert(at, text)
        self.last_insertion[document] = edit.id
        self.edits.append(edit)
        return edit


# ==========================
# Generator
# ==========================

def _note(text: str, limit: int = 80) -> str:
    first = re.split(r"(?<=[.!?])\s", (text or "").strip(), maxsplit=1)[0].rstrip(".")
    return first if len(first) <= limit else first[:limit - 3] + "..."


def _token_pattern(key: str) -> re.Pattern:
    """Matches ``key`` as written in text, with or without the prefix dash."""
    parts = re.match(r"^([A-Za-z]+)-?(\d+)(\w*)$", key)
    if not parts:
        return re.compile(r"(?<![A-Za-z0-9_-])" + re.escape(key) + r"(?![A-Za-z0-9_])")
    prefix, number, suffix = parts.groups()
    return re.compile(
        r"(?<![A-Za-z0-9_-])%s-?%s%s(?![A-Za-z0-9_])" % (re.escape(prefix), number, re.escape(suffix))
    )


def _stem(token: str) -> str:
    return token[:-1] if len(token) > 3 and token.endswith("s") else token


class RemediationGenerator:
    """Turns CanonicalFindings into RemediationEdits, one template per category."""

    def __init__(self, cfg: Optional[RemediationConfig] = None):
        self.cfg = cfg or DEFAULTS.remediation
        self.templates = {
            "ambiguity": self._ambiguity,
            "inconsistency": self._inconsistency,
            "underspecification": self._underspecification,
            "duplication": self._duplication,
            "coverage-gap": self._coverage_gap,
            "renumbering": self._renumbering,
        }

    # ---------- Public API ----------

    def generate(
        self,
        findings: Sequence[CanonicalFinding],
        documents: Sequence[Document],
        graph: CrossReferenceGraph,
        threshold: Optional[str] = None,
    ) -> List[RemediationEdit]:
        threshold = (threshold or self.cfg.threshold).upper()
        if threshold not in SEVERITIES:
            raise ValueError(f"unknown severity threshold {threshold!r}")

        qualifying = [f for f in findings if meets_threshold(f.severity, threshold)]
        qualifying.sort(key=lambda f: (f.category not in _INTRODUCING, -SEVERITY_RANK[f.severity], f.id))

        plan = _Plan(documents)
        self._task_keys: Set[str] = set()
        for finding in qualifying:
            template = self.templates.get(finding.category)
            if template is None:
                logger.debug("No remediation template for category %s (%s)", finding.category, finding.id)
                continue
            before = len(plan.edits)
            template(finding, plan, graph)
            logger.debug("Finding %s produced %d edit(s)", finding.id, len(plan.edits) - before)

        ordered = order_edits(plan.edits, self.cfg.precedence)
        logger.info("Remediation plan: %d edit(s) from %d finding(s) at or above %s",
                    len(ordered), len(qualifying), threshold)
        return ordered

    # ---------- Templates ----------

    def _ambiguity(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        # Merged findings name one term each in their summaries
        wanted = {t.lower() for f in finding.sources for t in _QUOTED_TERM.findall(f.summary)}
        for loc in finding.locations:
            for n in loc.line_range.lines:
                line_range = LineRange(n, n)
                text = plan.text(loc.document, line_range)
                if not text:
                    continue
                hits = [h for h in find_vague_terms(text) if not wanted or h[1].lower() in wanted]
                if not hits:
                    if not wanted and not _EXISTING_MARKER.search(text):
                        marker = CLARIFICATION_MARKER.format(note=_note(finding.recommendation or finding.summary))
                        plan.replace(loc.document, line_range, f"{text} {marker}", finding.id)
                    continue
                after, deps = self._quantify(text, hits, loc.document, graph, plan)
                plan.replace(loc.document, line_range, after, finding.id, deps)

    def _quantify(self, text: str, hits, document: str, graph: CrossReferenceGraph,
                  plan: _Plan) -> Tuple[str, List[str]]:
        """
        Rewrite vague terms right to left. The leftmost one becomes a
        reference to the best-matching constant when the document has one;
        the others are kept and followed by a clarification marker.
        """
        chosen = []
        end = -1
        for column, term, _, hint in hits:
            if column >= end:
                chosen.append((column, len(term), hint))
                end = column + len(term)

        constant = self._constant_for(document, text, graph)
        deps: List[str] = []
        for idx in reversed(range(len(chosen))):
            column, length, hint = chosen[idx]
            if idx == 0 and constant is not None:
                key, shown = constant
                replacement = f"`{key}` ({shown})"
                deps = list(plan.introduced.get(key, []))
            else:
                replacement = text[column:column + length] + " " + CLARIFICATION_MARKER.format(note=_note(hint))
            text = text[:column] + replacement + text[column + length:]
        return text, deps

    def _constant_for(self, document: str, line: str, graph: CrossReferenceGraph) -> Optional[Tuple[str, str]]:
        """Best constant mentioned in ``document`` for a vague line, with its canonical value."""
        words = {_stem(t) for t in tokenize(line.replace("_", " "))}
        best = None
        for group in graph.constant_groups:
            if not any(m.document == document for m in group.mentions):
                continue
            key = group.identifier.key
            parts = {_stem(t) for t in tokenize(key.replace("_", " "))}
            shared = len(parts & words)
            if shared == 0 or key in line:
                continue
            rank = (-shared, key)
            if best is None or rank < best[0]:
                canonical = canonical_mention(group, self.cfg.precedence)
                best = (rank, key, canonical.raw_value or canonical.identifier.value or "")
        return (best[1], best[2]) if best else None

    def _inconsistency(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        touched = set(finding.locations)
        groups = [g for g in graph.conflicts if touched & {m.location for m in g.mentions}]
        if not groups:
            logger.debug("Finding %s is not a constant conflict; no edit synthesized", finding.id)
            return
        for group in groups:
            self._rewrite_constant(group, finding.id, plan)

    def _rewrite_constant(self, group: ConstantGroup, finding_id: str, plan: _Plan) -> None:
        canonical = canonical_mention(group, self.cfg.precedence)
        key = group.identifier.key
        for mention in sorted(group.mentions, key=lambda m: (m.document, m.line_range.start, m.column)):
            if mention.identifier.value == canonical.identifier.value or not mention.raw_value:
                continue
            text = plan.text(mention.document, mention.line_range)
            if text is None:
                continue
            start = text.find(mention.raw_value, mention.column + len(key))
            if start < 0:
                start = text.find(mention.raw_value)
            if start < 0:
                logger.warning("Cannot locate value %r of %s at %s", mention.raw_value, key, mention.location)
                continue
            value = self._render_value(canonical, mention)
            after = text[:start] + value + text[start + len(mention.raw_value):]
            edit = plan.replace(mention.document, mention.line_range, after, finding_id)
            if edit is not None:
                plan.introduced.setdefault(key, []).append(edit.id)

    @staticmethod
    def _render_value(canonical: Mention, target: Mention) -> str:
        raw = canonical.raw_value or canonical.identifier.value or ""
        if _BARE_NUMBER.match(target.raw_value or ""):
            unit = unit_for_key(target.identifier.key)
            if unit:
                bare = value_in_unit(canonical.identifier.value or "", unit)
                if bare is not None:
                    return bare
        return raw

    def _underspecification(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        marker = CLARIFICATION_MARKER.format(note=_note(finding.summary))
        for loc in finding.locations:
            for n in loc.line_range.lines:
                line_range = LineRange(n, n)
                text = plan.text(loc.document, line_range)
                if not text:
                    continue
                # Placeholders quoted inside an existing marker do not count
                bare = _EXISTING_MARKER.sub(lambda m: " " * len(m.group(0)), text)
                hit = _PLACEHOLDER.search(bare)
                if hit:
                    after = text[:hit.start()] + marker + text[hit.end():]
                elif _EXISTING_MARKER.search(text):
                    continue
                else:
                    after = f"{text} {marker}"
                plan.replace(loc.document, line_range, after, finding.id)

    def _duplication(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        if len(finding.locations) < 2:
            return
        ordered = sorted(
            finding.locations,
            key=lambda loc: (document_precedence(loc.document, self.cfg.precedence), loc.document,
                             loc.line_range.start),
        )
        keep = ordered[0]
        for loc in ordered[1:]:
            text = plan.text(loc.document, loc.line_range)
            if not text:
                continue
            prefix = _LIST_PREFIX.match(text)
            after = (prefix.group(1) if prefix else "") + f"See {keep}."
            plan.replace(loc.document, loc.line_range, after, finding.id)

    def _coverage_gap(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        tasks_doc = self._tasks_document(plan)
        nodes = {n.key: n for n in graph.nodes_of_kind(REQUIREMENT, SUCCESS_CRITERION)}
        # The subject key leads each source summary
        keys = [k for f in finding.sources for k in _REQUIREMENT_KEY.findall(f.summary)[:1] if k in nodes]
        for key in dict.fromkeys(keys):
            task_key = next_free_key(graph, "T", 3, self._task_keys)
            self._task_keys.add(task_key)
            description = self._describe(nodes[key], graph)
            name = plan.renamed.get(key, key)
            line = f"- [ ] {task_key} Implement {name}" + (f": {description}" if description else "")
            plan.append_line(tasks_doc, line, finding.id, plan.introduced.get(name, []))

    def _tasks_document(self, plan: _Plan) -> str:
        for path in plan.spaces:
            if document_matches(path, self.cfg.tasks_document) and path.endswith(".md"):
                return path
        return self.cfg.tasks_document

    @staticmethod
    def _describe(node: Identifier, graph: CrossReferenceGraph) -> str:
        for mention in graph.mentions_of(node):
            if mention.is_definition:
                return _note(_DEFINITION_PREFIX.sub("", mention.snippet), limit=60)
        return ""

    def _renumbering(self, finding: CanonicalFinding, plan: _Plan, graph: CrossReferenceGraph) -> None:
        for old_key, new_key in _RENAME.findall(finding.recommendation):
            node = next((n for n in graph.nodes if n.key == old_key and n.kind != NAMED_CONSTANT), None)
            if node is None:
                logger.debug("Renumbering target %s not found in graph", old_key)
                continue
            mentions = sorted(
                graph.mentions_of(node),
                key=lambda m: (not m.is_definition, document_precedence(m.document, self.cfg.precedence),
                               m.document, m.line_range.start),
            )
            pattern = _token_pattern(old_key)
            first: Optional[str] = None
            done: Set[Tuple[str, int]] = set()
            for mention in mentions:
                spot = (mention.document, mention.line_range.start)
                if spot in done:
                    continue
                done.add(spot)
                text = plan.text(mention.document, mention.line_range)
                if not text or not pattern.search(text):
                    continue
                after = pattern.sub(new_key, text)
                edit = plan.replace(mention.document, mention.line_range, after, finding.id,
                                    [first] if first else [])
                if edit is not None and first is None:
                    first = edit.id
                    plan.introduced.setdefault(new_key, []).append(edit.id)
                    plan.renamed[old_key] = new_key


# ==========================
# Ordering
# ==========================

def order_edits(edits: Sequence[RemediationEdit], precedence: Optional[Sequence[str]] = None) -> List[RemediationEdit]:
    """
    Topological order over ``depends_on``; ties broken by document precedence,
    then document, line and id. Raises RemediationCycleError on a cycle.
    """
    precedence = tuple(precedence or DEFAULTS.remediation.precedence)
    by_id = {e.id: e for e in edits}
    indegree = {e.id: 0 for e in edits}
    dependents: Dict[str, List[str]] = {e.id: [] for e in edits}
    for edit in edits:
        for dep in set(edit.depends_on):
            if dep not in by_id:
                logger.warning("Edit %s depends on unknown edit %s; ignoring", edit.id, dep)
                continue
            indegree[edit.id] += 1
            dependents[dep].append(edit.id)

    def rank(edit: RemediationEdit) -> Tuple:
        return (document_precedence(edit.target_document, precedence), edit.target_document,
                edit.line_range.start, key_sort_key(edit.id))

    heap = [(rank(by_id[i]), i) for i, d in indegree.items() if d == 0]
    heapq.heapify(heap)
    ordered: List[RemediationEdit] = []
    while heap:
        _, edit_id = heapq.heappop(heap)
        ordered.append(by_id[edit_id])
        for nxt in dependents[edit_id]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                heapq.heappush(heap, (rank(by_id[nxt]), nxt))

    if len(ordered) != len(edits):
        stuck = sorted((i for i, d in indegree.items() if d > 0), key=key_sort_key)
        raise RemediationCycleError(stuck)
    return ordered


def generate(
    findings: Sequence[CanonicalFinding],
    documents: Sequence[Document],
    graph: CrossReferenceGraph,
    threshold: Optional[str] = None,
    cfg: Optional[RemediationConfig] = None,
) -> List[RemediationEdit]:
    return RemediationGenerator(cfg).generate(findings, documents, graph, threshold)
