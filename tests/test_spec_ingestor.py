from pathlib import Path

import pytest
from docx import Document as DocxDocument

from specaudit.errors import IngestionError
from specaudit.models import NAMED_CONSTANT, REQUIREMENT, SUCCESS_CRITERION, TASK, LineRange
from specaudit.spec_ingestor import SpecIngestor, canonical_key, parse
from tests.doc_fixtures import SPEC_MD, doc_by_path


def _keys(document, kind=None):
    return [m.identifier.key for m in document.mentions if kind is None or m.identifier.kind == kind]


def test_sections_follow_headings():
    doc = parse("spec.md", SPEC_MD)
    assert [s.heading for s in doc.sections] == [
        "Feature Specification: Outline Panel",
        "Requirements",
        "Success Criteria",
    ]
    assert [(s.start_line, s.end_line) for s in doc.sections] == [(1, 2), (3, 9), (10, 12)]
    assert "FR-011" in doc.sections[1].body_text


def test_unstructured_text_is_one_section_without_mentions():
    doc = parse("notes.md", "just some prose\nwith no structure at all\n")
    assert len(doc.sections) == 1
    assert doc.sections[0].heading == ""
    assert (doc.sections[0].start_line, doc.sections[0].end_line) == (1, 2)
    assert doc.mentions == ()


def test_empty_text_parses():
    doc = parse("spec.md", "")
    assert len(doc.sections) == 1
    assert doc.mentions == ()
    assert doc.anomalies == ()


def test_preamble_before_first_heading_becomes_section():
    doc = parse("plan.md", "intro line\n\n# Plan\nbody\n")
    assert [s.heading for s in doc.sections] == ["", "Plan"]
    assert doc.sections[0].end_line == 2


def test_headings_inside_code_fences_are_ignored():
    doc = parse("plan.md", "```\n# not a heading\n```\n")
    assert [s.heading for s in doc.sections] == [""]


def test_identifier_mentions_carry_line_and_definition_flag():
    doc = parse("spec.md", SPEC_MD)
    fr010 = [m for m in doc.mentions if m.identifier.key == "FR-010"]
    assert len(fr010) == 1
    assert fr010[0].line_range == LineRange(5, 5)
    assert fr010[0].is_definition
    assert fr010[0].identifier.kind == REQUIREMENT

    fr011 = sorted((m for m in doc.mentions if m.identifier.key == "FR-011"), key=lambda m: m.line_range)
    assert [m.line_range.start for m in fr011] == [6, 12]
    assert [m.is_definition for m in fr011] == [True, False]

    assert _keys(doc, SUCCESS_CRITERION) == ["SC-004"]
    assert "FR-017a" in _keys(doc, REQUIREMENT)


def test_constant_after_backticked_name():
    doc = parse("spec.md", SPEC_MD)
    constants = [m for m in doc.mentions if m.identifier.kind == NAMED_CONSTANT]
    assert len(constants) == 1
    assert constants[0].identifier.key == "OUTLINE_UPDATE_DEBOUNCE_MS"
    assert constants[0].raw_value == "500ms"
    assert constants[0].identifier.value == "500ms"


def test_identifier_digits_are_not_constant_values():
    doc = parse("spec.md", "Refresh within `OUTLINE_UPDATE_DEBOUNCE_MS` per FR-010, SC-004 and T020.\n")
    assert [m for m in doc.mentions if m.identifier.kind == NAMED_CONSTANT] == []


def test_constant_value_after_an_identifier_is_still_found():
    doc = parse("spec.md", "`OUTLINE_UPDATE_DEBOUNCE_MS` per FR-010 is 300ms\n")
    (constant,) = [m for m in doc.mentions if m.identifier.kind == NAMED_CONSTANT]
    assert constant.raw_value == "300ms"
    assert constant.identifier.value == "300ms"


def test_constant_assignment_value_uses_unit_from_name():
    doc = parse("data-model.md", "TIMEOUT_SECONDS = 2\nRETRY_LIMIT = 1,000 attempts\n")
    values = {m.identifier.key: (m.raw_value, m.identifier.value) for m in doc.mentions}
    assert values["TIMEOUT_SECONDS"] == ("2", "2000ms")
    assert values["RETRY_LIMIT"] == ("1,000", "1000")


def test_constant_values_compare_after_normalization():
    a = parse("spec.md", "`DEBOUNCE_MS` is 500 ms\n").mentions[0]
    b = parse("plan.md", "DEBOUNCE_MS = 0.5s\n").mentions[0]
    assert a.identifier.value == b.identifier.value == "500ms"


def test_task_keys_are_normalized():
    doc = parse("tasks.md", "- [ ] T-020 depends on T021\n")
    assert _keys(doc, TASK) == ["T020", "T021"]


@pytest.mark.parametrize(
    "prefix, number, expected",
    [("fr", "010", "FR-010"), ("T", "020", "T020"), ("FR", "017A", "FR-017a"), ("SC", "4", "SC-4")],
)
def test_canonical_key(prefix, number, expected):
    assert canonical_key(prefix, number) == expected


def test_unknown_definition_prefix_is_an_anomaly_not_an_error():
    doc = parse("spec.md", "- **XYZ-12**: something odd\n")
    assert doc.mentions == ()
    assert len(doc.anomalies) == 1
    assert "XYZ-12" in doc.anomalies[0]


def test_duplicate_definitions_are_kept_as_separate_mentions():
    doc = parse("spec.md", "- **FR-017a**: first\n- **FR-042**: same rule renumbered\n- **FR-017a**: again\n")
    assert _keys(doc) == ["FR-017a", "FR-042", "FR-017a"]
    assert all(m.is_definition for m in doc.mentions)


def test_load_directory_reads_recognized_files(docs_dir):
    docs = SpecIngestor().load_directory(docs_dir)
    assert sorted(d.path for d in docs) == ["data-model.md", "spec.md", "tasks.md"]
    assert "T020" in _keys(doc_by_path(docs, "tasks.md"))


def test_load_directory_includes_contracts(docs_dir):
    contracts = docs_dir / "contracts"
    (contracts / "nested").mkdir(parents=True)
    (contracts / "outline.md").write_text("Returns FR-010 payloads\n", encoding="utf-8")
    (contracts / "nested" / "api.ts").write_text("export const MAX_OUTLINE_DEPTH = 6;\n", encoding="utf-8")
    docs = SpecIngestor().load_directory(docs_dir)
    paths = [d.path for d in docs]
    assert "contracts/outline.md" in paths
    assert "contracts/nested/api.ts" in paths
    api = doc_by_path(docs, "contracts/nested/api.ts")
    assert [m.identifier.value for m in api.mentions] == ["6"]


def test_missing_recognized_files_are_not_fatal(tmp_path):
    (tmp_path / "spec.md").write_text(SPEC_MD, encoding="utf-8")
    docs = SpecIngestor().load_directory(tmp_path)
    assert [d.path for d in docs] == ["spec.md"]


def test_missing_directory_is_an_ingestion_error(tmp_path):
    with pytest.raises(IngestionError):
        SpecIngestor().load_directory(tmp_path / "nope")


def test_non_utf8_file_is_an_ingestion_error(tmp_path):
    (tmp_path / "spec.md").write_bytes(b"\xff\xfe\xfa broken")
    with pytest.raises(IngestionError):
        SpecIngestor().load_directory(tmp_path)


def test_docx_is_converted_to_markdown(tmp_path: Path):
    docx = DocxDocument()
    docx.add_heading("Requirements", level=2)
    docx.add_paragraph("- **FR-010**: System MUST refresh the outline.")
    table = docx.add_table(rows=2, cols=2)
    table.rows[0].cells[0].text = "Constant"
    table.rows[0].cells[1].text = "Value"
    table.rows[1].cells[0].text = "`OUTLINE_UPDATE_DEBOUNCE_MS`"
    table.rows[1].cells[1].text = "300"
    docx.save(str(tmp_path / "spec.docx"))

    docs = SpecIngestor().load_directory(tmp_path)
    assert [d.path for d in docs] == ["spec.docx"]
    doc = docs[0]
    assert doc.raw_text.startswith("## Requirements\n")
    assert [s.heading for s in doc.sections] == ["Requirements"]
    assert "FR-010" in _keys(doc, REQUIREMENT)
    assert "| Constant | Value |" in doc.raw_text

