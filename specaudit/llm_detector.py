# llm_detector.py
"""
Detector passes backed by a google-genai model.

Each pass renders its catalog prompt over the numbered document text,
asks the model for JSON matching the pass's output schema, validates the
reply with jsonschema and converts it into Findings.
"""

import json
import logging
import mimetypes
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import google.genai as genai
from google.genai.types import GenerateContentConfig
from jsonschema import Draft202012Validator

from specaudit.config import DEFAULTS, LLMConfig
from specaudit.errors import LLMResponseError, PassConfigurationError
from specaudit.models import (
    NAMED_CONSTANT,
    CrossReferenceGraph,
    Document,
    Finding,
    LineRange,
    Location,
    identifier_sort_key,
)
from specaudit.pass_catalog import PASS_CATALOG, catalog_entry

logger = logging.getLogger(__name__)


# ---------- schema helpers ----------

def build_global_defs(catalog: dict) -> dict:
    return deepcopy(catalog.get("$defs", {}))


def inject_defs_into_schema(step_schema: dict, global_defs: dict) -> dict:
    """
    Merge the catalog-wide $defs into one pass's output schema.
    Local definitions win over global ones.
    """
    merged = deepcopy(step_schema)
    local_defs = deepcopy(merged.get("$defs", {}))
    combined = {**(global_defs or {}), **local_defs}
    if combined:
        merged["$defs"] = combined
    return merged


def validate_json(payload: Any, schema: dict) -> None:
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.absolute_path) or "<root>"
        raise LLMResponseError(f"response does not match schema at {where}: {first.message}")


def guess_mime(p: Path) -> str:
    if p.suffix.lower() == ".md":
        return "text/markdown"
    if p.suffix.lower() in {".txt", ".py", ".yaml", ".yml", ".json", ".proto"}:
        return "text/plain"
    mt, _ = mimetypes.guess_type(str(p))
    return mt or "text/plain"


def mk_config(schema: dict, temperature: float = 0.1) -> GenerateContentConfig:
    # Older SDKs have no response_json_schema and reject it as an unknown field
    kwargs = dict(
        system_instruction=(
            "You are one analysis pass over a set of design documents. "
            "Return JSON only that matches the provided schema."
        ),
        response_mime_type="application/json",
        temperature=temperature,
    )
    try:
        return GenerateContentConfig(response_json_schema=schema, **kwargs)
    except (TypeError, ValueError):
        return GenerateContentConfig(response_schema=schema, **kwargs)


# ---------- prompt rendering ----------

def numbered_text(document: Document) -> str:
    return "\n".join(f"{n:>5} | {line}" for n, line in enumerate(document.lines, 1))


def identifier_listing(graph: CrossReferenceGraph) -> str:
    rows = []
    for node in sorted(graph.nodes, key=identifier_sort_key):
        where = ", ".join(str(m.location) for m in graph.mentions_of(node)[:3])
        if node.kind == NAMED_CONSTANT:
            values = sorted({m.identifier.value or "" for m in graph.mentions_of(node)})
            rows.append(f"- {node.key} ({node.kind}) = {' | '.join(values)} @ {where}")
        else:
            rows.append(f"- {node.key} ({node.kind}) @ {where}")
    return "\n".join(rows) or "(none)"


def render_prompt(template: str, inputs: Dict[str, str]) -> str:
    """Fill ``{{name}}`` placeholders from ``inputs``; unknown ones are left as is."""
    t = template
    for key, value in inputs.items():
        t = t.replace("{{" + key + "}}", str(value))
    return t


def _parse_reply(text: Optional[str]) -> Any:
    if not text:
        raise LLMResponseError("model returned an empty response")
    body = text.strip()
    if body.startswith("```"):
        body = body.strip("`")
        if body.lower().startswith("json"):
            body = body[4:]
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"model returned invalid JSON: {exc}") from exc


# ---------- detector ----------

class LLMDetector:
    """One catalog entry bound to a google-genai client."""

    def __init__(self, name: str, entry: dict, client, cfg: Optional[LLMConfig] = None,
                 global_defs: Optional[dict] = None):
        self.name = name
        self.entry = entry
        self.client = client
        self.cfg = cfg or DEFAULTS.llm
        self.schema = inject_defs_into_schema(entry["output_schema"], global_defs or {})

    def detect(self, documents: Sequence[Document], graph: CrossReferenceGraph) -> List[Finding]:
        documents = sorted(documents, key=lambda d: d.path)
        if self.cfg.upload_documents:
            with tempfile.TemporaryDirectory(prefix="specaudit-") as tmp:
                attachments = self._upload(documents, Path(tmp))
                listing = "\n".join(f"- {d.path} (attached, {d.line_count} lines)" for d in documents)
                payload = self._call(graph, listing, attachments)
        else:
            listing = "\n\n".join(f"=== {d.path} ===\n{numbered_text(d)}" for d in documents)
            payload = self._call(graph, listing, [])
        return self.to_findings(payload, documents)

    def _upload(self, documents: Sequence[Document], tmp: Path) -> list:
        attachments = []
        for doc in documents:
            local = tmp / doc.path.replace("/", "__")
            if local.suffix.lower() == ".docx":
                local = local.with_suffix(".md")
            local.write_text(numbered_text(doc), encoding="utf-8")
            f = self.client.files.upload(file=str(local), config={"mime_type": guess_mime(local)})
            attachments.append(f)
        logger.debug("Pass %s uploaded %d document(s)", self.name, len(attachments))
        return attachments

    def _call(self, graph: CrossReferenceGraph, listing: str, attachments: list) -> Any:
        prompt = render_prompt(self.entry["llm_prompt_template"], {
            "category": self.entry["category"],
            "instructions": self.entry.get("instructions", ""),
            "identifiers": identifier_listing(graph),
            "documents": listing,
        })
        parts = [{"role": "user", "parts": [{"text": prompt}]}]
        attempts = max(1, int(self.cfg.max_attempts))
        for attempt in range(1, attempts + 1):
            resp = self.client.models.generate_content(
                model=self.cfg.model,
                config=mk_config(self.schema, temperature=self.cfg.temperature),
                contents=parts + attachments,
            )
            try:
                payload = _parse_reply(getattr(resp, "text", None))
                validate_json(payload, self.schema)
                return payload
            except LLMResponseError as exc:
                if attempt == attempts:
                    raise
                logger.warning("Pass %s attempt %d/%d rejected: %s", self.name, attempt, attempts, exc)

    def to_findings(self, payload: dict, documents: Sequence[Document]) -> List[Finding]:
        line_counts = {d.path: d.line_count for d in documents}
        out: List[Finding] = []
        for item in payload.get("findings", []):
            locations = []
            for loc in item.get("locations", []):
                doc, start, end = loc["document"], loc["start"], loc["end"]
                if doc not in line_counts:
                    logger.warning("Pass %s: dropping location in unknown document %s", self.name, doc)
                    continue
                if end < start or end > max(line_counts[doc], 1):
                    logger.warning("Pass %s: dropping out-of-range location %s:%s-%s", self.name, doc, start, end)
                    continue
                locations.append(Location(doc, LineRange(start, end)))
            if not locations:
                logger.warning("Pass %s: finding %s has no usable location; skipped", self.name, item["id"])
                continue
            out.append(Finding(
                id=item["id"],
                pass_name=self.name,
                category=self.entry["category"],
                status=item["status"],
                severity=item.get("severity"),
                impact_score=item.get("impact_score"),
                locations=tuple(sorted(set(locations))),
                summary=item["summary"],
                recommendation=item.get("recommendation", ""),
            ))
        return out


def build_llm_detector(name: str, client, cfg: Optional[LLMConfig] = None) -> LLMDetector:
    try:
        entry = catalog_entry(name)
    except KeyError:
        raise PassConfigurationError(f"no catalog entry for pass {name!r}") from None
    return LLMDetector(name, entry, client, cfg, build_global_defs(PASS_CATALOG))


def make_client(cfg: Optional[LLMConfig] = None):
    cfg = cfg or DEFAULTS.llm
    api_key = os.environ.get(cfg.api_key_env)
    if not api_key:
        raise PassConfigurationError(f"LLM passes need an API key in ${cfg.api_key_env}")
    return genai.Client(api_key=api_key)
