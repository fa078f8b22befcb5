import pytest

from specaudit.coverage import CoverageAnalyzer
from specaudit.detectors import (
    AmbiguityDetector,
    Detector,
    DuplicationDetector,
    UnderspecificationDetector,
    available_passes,
    find_vague_terms,
    prose_lines,
    resolve_passes,
)
from specaudit.errors import PassConfigurationError
from specaudit.llm_detector import LLMDetector
from specaudit.models import HIGH, MEDIUM, LineRange, Location
from specaudit.spec_ingestor import parse
from specaudit.xref_graph import build


def test_find_vague_terms_reports_columns_in_order():
    hits = find_vague_terms("It must be fast, scalable and user-friendly etc.")
    assert [(term, severity) for _, term, severity, _ in hits] == [
        ("fast", HIGH), ("scalable", MEDIUM), ("user-friendly", MEDIUM), ("etc.", HIGH),
    ]
    assert hits[0][0] == len("It must be ")


def test_vague_terms_match_whole_words_only():
    assert find_vague_terms("breakfast is steadfast") == []
    assert find_vague_terms("a fast-path") == []


def test_prose_lines_skip_fences_headings_and_blanks():
    doc = parse("plan.md", "# Title\n\n```\nfast code\n```\nfast prose\n")
    assert list(prose_lines(doc)) == [(6, "fast prose")]


def test_ambiguity_detector(documents, graph):
    findings = AmbiguityDetector().detect(documents, graph)
    assert [(f.id, f.severity) for f in findings] == [("AMB-001", HIGH), ("AMB-002", MEDIUM)]
    assert all(f.locations == (Location("spec.md", LineRange(6, 6)),) for f in findings)
    assert "'fast'" in findings[0].summary
    assert "'large'" in findings[1].summary


def test_ambiguity_detector_ignores_code_contracts():
    docs = [parse("contracts/api.ts", "// keep this fast\n")]
    assert AmbiguityDetector().detect(docs, build(docs)) == []


def test_underspecification_detector_reports_impact_scores(documents, graph):
    (finding,) = UnderspecificationDetector().detect(documents, graph)
    assert finding.severity is None
    assert finding.impact_score == 3
    assert finding.locations == (Location("spec.md", LineRange(7, 7)),)


def test_clarification_marker_outranks_todo():
    docs = [parse("plan.md", "TODO decide [NEEDS CLARIFICATION: retention period]\n")]
    (finding,) = UnderspecificationDetector().detect(docs, build(docs))
    assert finding.impact_score == 4
    assert "NEEDS CLARIFICATION" in finding.summary


def test_duplication_across_documents():
    statement = "Outline refresh must complete before the next keystroke is rendered."
    docs = [parse("spec.md", f"- {statement}\n"), parse("plan.md", f"intro\n1. {statement}\n")]
    (finding,) = DuplicationDetector().detect(docs, build(docs))
    assert finding.impact_score == 3
    assert finding.locations == (
        Location("plan.md", LineRange(2, 2)),
        Location("spec.md", LineRange(1, 1)),
    )
    assert "Keep the statement at spec.md:1" in finding.recommendation


def test_duplication_within_one_document_scores_lower():
    statement = "The outline panel lists every heading of the current document in order."
    docs = [parse("spec.md", f"{statement}\n\n{statement}\n")]
    (finding,) = DuplicationDetector().detect(docs, build(docs))
    assert finding.impact_score == 2


def test_short_lines_and_tables_are_not_duplicates():
    text = "Short line here.\n| a | b | c | d | e | f | g | h |\n"
    docs = [parse("spec.md", text), parse("plan.md", text)]
    assert DuplicationDetector().detect(docs, build(docs)) == []


def test_detectors_satisfy_the_protocol():
    for detector in (AmbiguityDetector(), UnderspecificationDetector(), DuplicationDetector(), CoverageAnalyzer()):
        assert isinstance(detector, Detector)


def test_available_passes():
    names = available_passes()
    assert {"coverage", "ambiguity", "underspecification", "duplication"} <= set(names)
    assert "llm-terminology" in names


def test_resolve_builtin_passes():
    passes = resolve_passes(["coverage", "duplication"])
    assert [p.name for p in passes] == ["coverage", "duplication"]
    assert isinstance(passes[0], CoverageAnalyzer)


def test_resolve_rejects_unknown_and_duplicate_names():
    with pytest.raises(PassConfigurationError):
        resolve_passes(["coverage", "spelling"])
    with pytest.raises(PassConfigurationError):
        resolve_passes(["coverage", "coverage"])


def test_resolve_llm_pass_with_injected_client():
    client = object()
    (detector,) = resolve_passes(["llm-edge-case"], client=client)
    assert isinstance(detector, LLMDetector)
    assert detector.client is client
    assert detector.name == "llm-edge-case"


def test_resolve_llm_pass_without_api_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(PassConfigurationError):
        resolve_passes(["llm-ambiguity"])
