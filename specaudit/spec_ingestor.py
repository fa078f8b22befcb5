# spec_ingestor.py
"""
Spec Ingestor

Parses design documents (spec.md, plan.md, tasks.md, data-model.md,
contracts/*) into Documents with sections and identifier Mentions.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from docx import Document as DocxDocument
from docx.table import Table
from docx.text.paragraph import Paragraph

from specaudit.config import DEFAULTS, IngestConfig
from specaudit.errors import IngestionError
from specaudit.models import (
    FINDING,
    NAMED_CONSTANT,
    REQUIREMENT,
    SUCCESS_CRITERION,
    TASK,
    USER_STORY,
    Document,
    Identifier,
    LineRange,
    Mention,
    Section,
)
from specaudit.utils import normalize_value, render_table_markdown

logger = logging.getLogger(__name__)

PREFIX_KINDS = {
    "FR": REQUIREMENT,
    "SC": SUCCESS_CRITERION,
    "US": USER_STORY,
    "T": TASK,
    "EDIT": FINDING,
    "AMB": FINDING,
    "DUP": FINDING,
    "U": FINDING,
    "GAP": FINDING,
    "INC": FINDING,
}


def canonical_key(prefix: str, number: str) -> str:
    """FR-10 -> FR-10, fr010 -> FR-010, T-020 -> T020, FR-017A -> FR-017a."""
    prefix = prefix.strip().upper()
    digits = re.match(r"\d+", number).group(0)
    suffix = number[len(digits):].lower()
    if prefix == "T":
        return f"T{digits}{suffix}"
    return f"{prefix}-{digits}{suffix}"


class SpecIngestor:
    """Parses raw document text into Documents per the ingest configuration."""

    def __init__(self, cfg: Optional[IngestConfig] = None):
        self.cfg = cfg or DEFAULTS.ingest
        self.section_pattern = re.compile(self.cfg.section_header_regex)
        self.patterns = self._build_identifier_patterns()

    # ---------- Public API ----------

    def parse(self, path: str, raw_text: str) -> Document:
        """
        Parse one document. Never fails on text input: unstructured text
        yields a single section and no mentions.
        """
        lines = raw_text.splitlines()
        sections = self._split_sections(lines)
        mentions: List[Mention] = []
        anomalies: List[str] = []
        for number, line in enumerate(lines, 1):
            line_mentions, line_anomalies = self._extract_line(path, number, line)
            mentions.extend(line_mentions)
            anomalies.extend(line_anomalies)
        for anomaly in anomalies:
            logger.debug("%s: %s", path, anomaly)
        return Document(
            path=path,
            raw_text=raw_text,
            sections=tuple(sections),
            mentions=tuple(mentions),
            anomalies=tuple(anomalies),
        )

    def parse_docx(self, docx_path: Path, path: str) -> Document:
        """Convert a DOCX into markdown-like text, then parse it."""
        doc = DocxDocument(str(docx_path))
        out: List[str] = []
        for element in doc.element.body:
            if element.tag.endswith("p"):
                paragraph = Paragraph(element, doc)
                text = paragraph.text.strip()
                if not text:
                    continue
                if self._is_section_header(paragraph):
                    out.append("#" * self._heading_level(paragraph) + " " + text)
                else:
                    out.append(text)
            elif element.tag.endswith("tbl") and self.cfg.include_tables:
                table = Table(element, doc)
                if not table.rows:
                    continue
                headers = [cell.text.strip() for cell in table.rows[0].cells]
                rows = [[cell.text.strip() for cell in row.cells] for row in table.rows[1:]]
                out.append(render_table_markdown(headers, rows))
        return self.parse(path, "\n".join(out) + ("\n" if out else ""))

    def load_directory(self, directory) -> List[Document]:
        """
        Read every recognized file present in ``directory``. Missing files are
        skipped; an unreadable directory or file is fatal.
        """
        root = Path(directory)
        if not root.is_dir():
            raise IngestionError(f"input directory not found: {root}")

        documents: List[Document] = []
        for name in self.cfg.recognized_files:
            md_path = root / name
            docx_path = md_path.with_suffix(".docx")
            if md_path.is_file():
                documents.append(self.parse(name, self._read_text(md_path)))
            elif self.cfg.accept_docx and docx_path.is_file():
                rel = docx_path.relative_to(root).as_posix()
                try:
                    documents.append(self.parse_docx(docx_path, rel))
                except Exception as exc:
                    raise IngestionError(f"cannot read {docx_path}: {exc}") from exc
            else:
                logger.info("Recognized document %s not present in %s", name, root)

        contracts = root / self.cfg.contracts_dir
        if contracts.is_dir():
            for file_path in sorted(p for p in contracts.rglob("*") if p.is_file()):
                rel = file_path.relative_to(root).as_posix()
                documents.append(self.parse(rel, self._read_text(file_path)))
        logger.info("Ingested %d document(s) from %s", len(documents), root)
        return documents

    # ---------- Internal methods ----------

    def _build_identifier_patterns(self):
        window = int(self.cfg.constant_value_window)
        return {
            # **FR-010** at the start of a (list) line
            "definition": re.compile(r"^\s*-?\s*(?:\[[ xX]\]\s*)?\*\*([A-Z]{1,6})-?(\d+\w*)\*\*"),
            "inline": re.compile(
                r"(?<![A-Za-z0-9_-])(?:(FR|SC|US|EDIT|AMB|DUP|GAP|INC|U)-?(\d+[a-z]?)|(T)-?(\d{3,}[a-z]?))(?![A-Za-z0-9_])"
            ),
            "constant_assign": re.compile(r"\b([A-Z][A-Z0-9_]{3,})`?\s*=(?![=>])\s*([^\n]+)"),
            "constant_backtick": re.compile(
                r"`([A-Z][A-Z0-9_]{3,})`([^\n`]{0,%d}?)(?<![\w.-])(\d+(?:\.\d+)?\s?(?:ms|seconds|sec|s|px|%%|kb|mb)?)(?!\w|\.\d)" % window
            ),
        }

    def _split_sections(self, lines: List[str]) -> List[Section]:
        headings: List[Tuple[int, str]] = []
        in_fence = False
        for number, line in enumerate(lines, 1):
            if line.lstrip().startswith(("```", "~~~")):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            m = self.section_pattern.match(line)
            if m:
                headings.append((number, m.group(m.lastindex).strip()))

        total = max(1, len(lines))
        if not headings:
            return [Section(heading="", start_line=1, end_line=total, body_text="\n".join(lines))]

        sections: List[Section] = []
        first_heading_line = headings[0][0]
        if first_heading_line > 1 and any(l.strip() for l in lines[:first_heading_line - 1]):
            sections.append(Section(
                heading="",
                start_line=1,
                end_line=first_heading_line - 1,
                body_text="\n".join(lines[:first_heading_line - 1]),
            ))
        for idx, (start, heading) in enumerate(headings):
            end = headings[idx + 1][0] - 1 if idx + 1 < len(headings) else total
            sections.append(Section(
                heading=heading,
                start_line=start,
                end_line=max(start, end),
                body_text="\n".join(lines[start:end]),
            ))
        return sections

    def _extract_line(self, path: str, number: int, line: str) -> Tuple[List[Mention], List[str]]:
        mentions: List[Mention] = []
        anomalies: List[str] = []
        line_range = LineRange(number, number)
        snippet = line.strip()

        definition = self.patterns["definition"].match(line)
        definition_start = None
        if definition:
            prefix = definition.group(1)
            if prefix in PREFIX_KINDS:
                definition_start = definition.start(1)
            else:
                anomalies.append(
                    f"unclassified identifier {prefix}-{definition.group(2)} at line {number}"
                )

        for m in self.patterns["inline"].finditer(line):
            prefix = m.group(1) or m.group(3)
            digits = m.group(2) or m.group(4)
            identifier = Identifier(PREFIX_KINDS[prefix], canonical_key(prefix, digits))
            mentions.append(Mention(
                identifier=identifier,
                document=path,
                line_range=line_range,
                snippet=snippet,
                is_definition=definition_start is not None and m.start() == definition_start,
                column=m.start(),
            ))

        mentions.extend(self._extract_constants(path, line_range, line, snippet))
        return mentions, anomalies

    def _extract_constants(self, path: str, line_range: LineRange, line: str, snippet: str) -> List[Mention]:
        found: List[Tuple[int, str, str]] = []
        consumed: set[int] = set()

        for m in self.patterns["constant_assign"].finditer(line):
            raw = _trim_value(m.group(2))
            if not raw:
                continue
            found.append((m.start(1), m.group(1), raw))
            consumed.update(range(m.start(), m.end()))

        for m in self.patterns["constant_backtick"].finditer(line):
            if m.start(1) in consumed:
                continue
            found.append((m.start(1), m.group(1), m.group(3).strip()))
            consumed.update(range(m.start(), m.end()))

        mentions = []
        for column, key, raw in sorted(found):
            mentions.append(Mention(
                identifier=Identifier(NAMED_CONSTANT, key, normalize_value(raw, key)),
                document=path,
                line_range=line_range,
                snippet=snippet,
                raw_value=raw,
                column=column,
            ))
        return mentions

    def _read_text(self, file_path: Path) -> str:
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise IngestionError(f"cannot read {file_path}: {exc}") from exc
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise IngestionError(f"{file_path} is not valid UTF-8: {exc}") from exc

    def _is_section_header(self, p: Paragraph) -> bool:
        if p.style and p.style.name and p.style.name.startswith("Heading"):
            return True
        if p.runs:
            bold_chars = 0
            total_chars = 0
            for run in p.runs:
                if run.text.strip():
                    total_chars += len(run.text)
                    if getattr(run, "bold", False):
                        bold_chars += len(run.text)
            if total_chars > 0 and bold_chars / total_chars > 0.5:
                return True
        return False

    def _heading_level(self, p: Paragraph) -> int:
        name = (p.style.name if p.style and p.style.name else "") or ""
        m = re.search(r"(\d+)$", name)
        if name.startswith("Heading") and m:
            return max(1, min(int(m.group(1)), 6))
        return 2


def parse(path: str, raw_text: str, cfg: Optional[IngestConfig] = None) -> Document:
    return SpecIngestor(cfg).parse(path, raw_text)


_LEADING_NUMBER = re.compile(r"^[-+]?\d(?:[\d_]|,(?=\d{3}))*(?:\.\d+)?\s?(?:ms|seconds|sec|s|px|%|kb|mb)?(?!\w|\.\d)")


def _trim_value(rest: str) -> str:
    """Cut the literal off the right-hand side of an assignment."""
    rest = rest.strip().lstrip("`").strip()
    number = _LEADING_NUMBER.match(rest)
    if number:
        return number.group(0).strip()
    return re.split(r";|,|//|#|\||\)|\]|\}|\s\(|\s--\s", rest, maxsplit=1)[0].strip().strip("`").strip()
