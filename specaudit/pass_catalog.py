# pass_catalog.py
"""
Prompt and JSON-schema catalog for the LLM-backed passes.

Same layout as a JSON workflow file: shared ``$defs`` plus one entry per
pass with its prompt template and output schema.
"""

from typing import Any, Dict, List

_FINDINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "findings": {"type": "array", "items": {"$ref": "#/$defs/Finding"}},
    },
    "required": ["findings"],
}

_PROMPT = """You are reviewing the design documents of one software feature.
Category under review: {{category}}.
{{instructions}}

Report only concrete, line-anchored problems. Every finding must cite the
document path and the 1-based line numbers shown in the numbered listing.
Give either "severity" (HIGH, MEDIUM, LOW) or "impact_score" (1-5).

Known identifiers (requirements, success criteria, tasks, constants):
{{identifiers}}

Documents:
{{documents}}
"""

PASS_CATALOG: Dict[str, Any] = {
    "$defs": {
        "Location": {
            "type": "object",
            "properties": {
                "document": {"type": "string"},
                "start": {"type": "integer", "minimum": 1},
                "end": {"type": "integer", "minimum": 1},
            },
            "required": ["document", "start", "end"],
        },
        "Finding": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "status": {"enum": ["Clear", "Partial", "Missing"]},
                "severity": {"enum": ["HIGH", "MEDIUM", "LOW"]},
                "impact_score": {"type": "integer", "minimum": 1, "maximum": 5},
                "locations": {"type": "array", "items": {"$ref": "#/$defs/Location"}},
                "summary": {"type": "string", "minLength": 1},
                "recommendation": {"type": "string"},
            },
            "required": ["id", "status", "locations", "summary"],
            "anyOf": [{"required": ["severity"]}, {"required": ["impact_score"]}],
        },
    },
    "passes": [
        {
            "name": "llm-ambiguity",
            "category": "ambiguity",
            "instructions": "Find vague adjectives and unmeasurable criteria (fast, intuitive, large) "
                            "that lack a quantitative threshold.",
        },
        {
            "name": "llm-duplication",
            "category": "duplication",
            "instructions": "Find requirements or statements that restate the same rule in different "
                            "places, including near-duplicates with different wording.",
        },
        {
            "name": "llm-underspecification",
            "category": "underspecification",
            "instructions": "Find requirements missing an actor, a measurable outcome, error behaviour "
                            "or an object the verb acts on.",
        },
        {
            "name": "llm-terminology",
            "category": "terminology",
            "instructions": "Find the same concept named differently across documents, or one name used "
                            "for different concepts.",
        },
        {
            "name": "llm-edge-case",
            "category": "edge-case",
            "instructions": "Find boundary conditions (empty input, limits, concurrency, failure paths) "
                            "the documents leave undefined.",
        },
        {
            "name": "llm-constraint",
            "category": "constraint",
            "instructions": "Find performance, size and platform constraints that contradict each other "
                            "or are not traceable to a requirement.",
        },
    ],
}

for _entry in PASS_CATALOG["passes"]:
    _entry.setdefault("llm_prompt_template", _PROMPT)
    _entry.setdefault("output_schema", _FINDINGS_SCHEMA)


def llm_pass_names() -> List[str]:
    return [entry["name"] for entry in PASS_CATALOG["passes"]]


def catalog_entry(name: str) -> Dict[str, Any]:
    for entry in PASS_CATALOG["passes"]:
        if entry["name"] == name:
            return entry
    raise KeyError(name)
