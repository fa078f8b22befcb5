# report.py
"""
Report serialization: JSON (schema-validated) and Markdown.
"""

import json
import logging
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from specaudit.models import AnalysisReport, Location, RemediationEdit
from specaudit.utils import format_locations, render_table_markdown

logger = logging.getLogger(__name__)

FORMATS = ("json", "markdown")

REPORT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "$defs": {
        "Location": {
            "type": "object",
            "properties": {
                "document": {"type": "string"},
                "start": {"type": "integer", "minimum": 1},
                "end": {"type": "integer", "minimum": 1},
            },
            "required": ["document", "start", "end"],
            "additionalProperties": False,
        },
        "Severity": {"enum": ["HIGH", "MEDIUM", "LOW"]},
        "Status": {"enum": ["Clear", "Partial", "Missing"]},
    },
    "properties": {
        "documents": {"type": "array", "items": {"type": "string"}},
        "passes": {"type": "array", "items": {"type": "string"}},
        "threshold": {"$ref": "#/$defs/Severity"},
        "findings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "category": {"type": "string"},
                    "status": {"$ref": "#/$defs/Status"},
                    "severity": {"$ref": "#/$defs/Severity"},
                    "locations": {"type": "array", "items": {"$ref": "#/$defs/Location"}},
                    "summary": {"type": "string"},
                    "recommendation": {"type": "string"},
                    "passes": {"type": "array", "items": {"type": "string"}},
                    "sources": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["id", "category", "status", "severity", "locations", "summary", "sources"],
            },
        },
        "pass_failures": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "pass": {"type": "string"},
                    "error": {"type": "string"},
                    "timed_out": {"type": "boolean"},
                },
                "required": ["pass", "error", "timed_out"],
            },
        },
        "coverage": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "identifier": {"type": "string"},
                    "kind": {"type": "string"},
                    "covered": {"type": "boolean"},
                    "tasks": {"type": "array", "items": {"type": "string"}},
                    "annotation": {"type": "string"},
                },
                "required": ["identifier", "kind", "covered", "tasks"],
            },
        },
        "remediation": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "order": {"type": "integer", "minimum": 1},
                    "id": {"type": "string"},
                    "document": {"type": "string"},
                    "start": {"type": "integer", "minimum": 1},
                    "end": {"type": "integer", "minimum": 1},
                    "before": {"type": "string"},
                    "after": {"type": "string"},
                    "depends_on": {"type": "array", "items": {"type": "string"}},
                    "finding": {"type": "string"},
                    "insertion": {"type": "boolean"},
                },
                "required": ["order", "id", "document", "start", "end", "before", "after", "depends_on"],
            },
        },
        "warnings": {"type": "object", "additionalProperties": {"type": "integer", "minimum": 0}},
    },
    "required": ["documents", "findings", "pass_failures", "coverage", "remediation", "warnings"],
}


def _location(loc: Location) -> Dict[str, Any]:
    return {"document": loc.document, "start": loc.line_range.start, "end": loc.line_range.end}


def report_to_dict(report: AnalysisReport) -> Dict[str, Any]:
    return {
        "documents": list(report.documents),
        "passes": list(report.passes),
        "threshold": report.threshold,
        "findings": [
            {
                "id": f.id,
                "category": f.category,
                "status": f.status,
                "severity": f.severity,
                "locations": [_location(loc) for loc in f.locations],
                "summary": f.summary,
                "recommendation": f.recommendation,
                "passes": list(f.passes),
                "sources": list(f.source_ids),
            }
            for f in report.canonical_findings
        ],
        "pass_failures": [
            {"pass": p.pass_name, "error": p.error, "timed_out": p.timed_out} for p in report.failures
        ],
        "coverage": [
            {
                "identifier": row.identifier.key,
                "kind": row.identifier.kind,
                "covered": row.covered,
                "tasks": [t.key for t in row.tasks],
                "annotation": row.annotation,
            }
            for row in report.coverage
        ],
        "remediation": [
            {
                "order": order,
                "id": e.id,
                "document": e.target_document,
                "start": e.line_range.start,
                "end": e.line_range.end,
                "before": e.before_text,
                "after": e.after_text,
                "depends_on": list(e.depends_on),
                "finding": e.finding_id,
                "insertion": e.insertion,
            }
            for order, e in enumerate(report.edits, 1)
        ],
        "warnings": dict(report.warnings),
    }


def serialize_json(report: AnalysisReport) -> str:
    data = report_to_dict(report)
    errors = sorted(Draft202012Validator(REPORT_SCHEMA).iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        where = "/".join(str(p) for p in errors[0].absolute_path) or "<root>"
        raise ValueError(f"report does not match its schema at {where}: {errors[0].message}")
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


# ---------- Markdown ----------

def _fence(text: str) -> str:
    fence = "```"
    while fence in text:
        fence += "`"
    return f"{fence}\n{text}\n{fence}" if text else f"{fence}\n{fence}"


def _edit_block(order: int, edit: RemediationEdit) -> List[str]:
    head = f"#### {order}. {edit.id} ({'insert before' if edit.insertion else 'lines'} {edit.line_range})"
    lines = [head, ""]
    meta = []
    if edit.finding_id:
        meta.append(f"Finding: {edit.finding_id}")
    if edit.depends_on:
        meta.append(f"Depends on: {', '.join(edit.depends_on)}")
    if meta:
        lines += ["; ".join(meta), ""]
    if not edit.insertion:
        lines += ["Before:", "", _fence(edit.before_text), ""]
    lines += ["After:", "", _fence(edit.after_text), ""]
    return lines


def serialize_markdown(report: AnalysisReport) -> str:
    out: List[str] = ["# Specification Analysis Report", ""]
    out.append(f"Documents analysed: {', '.join(report.documents) if report.documents else '(none)'}")
    if report.passes:
        out.append(f"Passes: {', '.join(report.passes)}")
    out += [f"Remediation threshold: {report.threshold}", ""]

    out += ["## Findings", ""]
    if report.canonical_findings:
        rows = [
            [f.id, f.category, f.severity, f.status, format_locations(f.locations), f.summary,
             f.recommendation, ", ".join(f.source_ids)]
            for f in report.canonical_findings
        ]
        out.append(render_table_markdown(
            ["ID", "Category", "Severity", "Status", "Location(s)", "Summary", "Recommendation", "Sources"], rows
        ))
    else:
        out.append("No findings.")
    out.append("")

    if report.failures:
        out += ["## Pass Failures", ""]
        out.append(render_table_markdown(
            ["Pass", "Timed out", "Error"],
            [[p.pass_name, "yes" if p.timed_out else "no", p.error] for p in report.failures],
        ))
        out.append("")

    out += ["## Coverage", ""]
    if report.coverage:
        covered = sum(1 for row in report.coverage if row.covered)
        out.append(f"{covered}/{len(report.coverage)} requirements and success criteria have implementing tasks.")
        out.append("")
        out.append(render_table_markdown(
            ["Identifier", "Kind", "Covered", "Tasks", "Notes"],
            [[row.identifier.key, row.identifier.kind, "yes" if row.covered else "no",
              ", ".join(t.key for t in row.tasks), row.annotation] for row in report.coverage],
        ))
    else:
        out.append("No requirements or success criteria found.")
    out.append("")

    out += ["## Remediation Plan", ""]
    if report.edits:
        numbered = list(enumerate(report.edits, 1))
        for document in dict.fromkeys(e.target_document for e in report.edits):
            out += [f"### {document}", ""]
            for order, edit in numbered:
                if edit.target_document == document:
                    out += _edit_block(order, edit)
    else:
        out += ["No edits at or above the threshold.", ""]

    if report.warnings:
        out += ["## Warnings", ""]
        out.append(render_table_markdown(["Warning", "Count"], [[k, v] for k, v in report.warnings.items()]))
        out.append("")

    return "\n".join(out).rstrip("\n") + "\n"


def serialize(report: AnalysisReport, fmt: str = "markdown") -> str:
    if fmt == "json":
        return serialize_json(report)
    if fmt == "markdown":
        return serialize_markdown(report)
    raise ValueError(f"unknown report format {fmt!r}; expected one of {', '.join(FORMATS)}")
