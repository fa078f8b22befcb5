import pytest

from specaudit.detectors import resolve_passes
from specaudit.errors import RemediationCycleError
from specaudit.findings import canonicalize
from specaudit.models import HIGH, PARTIAL, Finding, LineRange, Location, RemediationEdit
from specaudit.pipeline import analyze_documents
from specaudit.remediation import DocumentWorkspace, apply_edits, generate, order_edits
from specaudit.spec_ingestor import parse
from specaudit.xref_graph import build
from tests.doc_fixtures import SPEC_MD


def _plan(documents, threshold="MEDIUM"):
    report = analyze_documents(documents, resolve_passes(["coverage", "ambiguity", "underspecification",
                                                          "duplication"]), threshold=threshold)
    return report.edits


def _edit(id, document="spec.md", line=1, before="", after="x", depends_on=(), insertion=False):
    return RemediationEdit(id, document, LineRange(line, line), before, after, tuple(depends_on),
                           insertion=insertion)


def _by_id(edits):
    return {e.id: e for e in edits}


def test_fixture_plan_edits(documents):
    edits = _by_id(_plan(documents))
    assert len(edits) == 8

    drift = edits["EDIT-001"]
    assert (drift.target_document, drift.line_range) == ("data-model.md", LineRange(3, 3))
    assert drift.before_text == "OUTLINE_UPDATE_DEBOUNCE_MS = 300"
    assert drift.after_text == "OUTLINE_UPDATE_DEBOUNCE_MS = 500"

    assert edits["EDIT-002"].after_text == "- **FR-018**: System MUST collapse nested headings."
    assert edits["EDIT-003"].target_document == "tasks.md"
    assert edits["EDIT-003"].after_text.endswith("for FR-018")
    assert edits["EDIT-003"].depends_on == ("EDIT-002",)

    vague = edits["EDIT-004"]
    assert vague.line_range == LineRange(6, 6)
    assert "`OUTLINE_UPDATE_DEBOUNCE_MS` (500ms) for large [NEEDS CLARIFICATION:" in vague.after_text
    assert vague.depends_on == ("EDIT-001",)

    tasks = [edits[f"EDIT-00{n}"] for n in (5, 6, 7)]
    assert all(e.insertion and e.line_range == LineRange(6, 6) for e in tasks)
    assert [e.after_text.split()[3:5] for e in tasks] == [
        ["T031", "Implement"], ["T032", "Implement"], ["T033", "Implement"],
    ]
    assert [e.after_text.split()[5].rstrip(":") for e in tasks] == ["FR-012", "FR-011", "SC-004"]
    assert [e.depends_on for e in tasks] == [(), ("EDIT-005",), ("EDIT-006",)]

    placeholder = edits["EDIT-008"]
    assert "(format [NEEDS CLARIFICATION: Placeholder TBD left in spec.md line 7])" in placeholder.after_text


def test_plan_is_topologically_ordered_by_precedence(documents):
    edits = _plan(documents)
    assert [e.id for e in edits] == [
        "EDIT-008", "EDIT-002", "EDIT-003", "EDIT-005", "EDIT-006", "EDIT-007", "EDIT-001", "EDIT-004",
    ]
    position = {e.id: i for i, e in enumerate(edits)}
    for edit in edits:
        assert all(position[dep] < position[edit.id] for dep in edit.depends_on)


def test_plan_applies_cleanly(documents):
    result = apply_edits(documents, _plan(documents))
    assert result["data-model.md"].splitlines()[2] == "OUTLINE_UPDATE_DEBOUNCE_MS = 500"
    spec_lines = result["spec.md"].splitlines()
    assert spec_lines[7].startswith("- **FR-018**")
    assert "FR-017a" not in result["spec.md"] + result["tasks.md"]
    task_lines = result["tasks.md"].splitlines()
    assert len(task_lines) == 8
    assert task_lines[5].startswith("- [ ] T031 Implement FR-012")
    assert result["tasks.md"].endswith("\n")


def test_threshold_high_keeps_only_high_findings(documents):
    edits = _plan(documents, threshold="HIGH")
    # constant drift, vague wording on FR-011 and the unreferenced FR-012 gap
    assert [(e.target_document, e.line_range.start) for e in edits] == [
        ("tasks.md", 6), ("data-model.md", 3), ("spec.md", 6),
    ]


def test_threshold_low_adds_nothing_for_categories_without_a_template(documents):
    assert len(_plan(documents, threshold="LOW")) == len(_plan(documents))


def test_unknown_threshold_is_rejected(documents):
    graph = build(documents)
    with pytest.raises(ValueError):
        generate([], documents, graph, threshold="URGENT")


def test_missing_tasks_file_creates_one():
    docs = [parse("spec.md", SPEC_MD)]
    edits = _plan(docs)
    result = apply_edits(docs, edits)
    task_lines = result["tasks.md"].splitlines()
    assert [line.split()[3] for line in task_lines] == ["T001", "T002", "T003", "T004", "T005"]
    assert task_lines[3].startswith("- [ ] T004 Implement FR-018")
    rename = next(e for e in edits if e.after_text.startswith("- **FR-018**"))
    created = next(e for e in edits if "T004" in e.after_text)
    assert rename.id in created.depends_on


def test_duplicates_are_replaced_with_a_reference():
    statement = "Outline refresh must complete before the next keystroke is rendered."
    docs = [parse("spec.md", f"- {statement}\n"), parse("plan.md", f"intro\n1. {statement}\n")]
    edits = _plan(docs)
    (dup,) = [e for e in edits if e.target_document == "plan.md"]
    assert dup.line_range == LineRange(2, 2)
    assert dup.after_text == "1. See spec.md:1."


def test_edits_on_one_line_are_chained():
    docs = [parse("plan.md", "The panel should be fast and robust (details TBD).\n")]
    edits = _plan(docs)
    assert len(edits) == 2
    first, second = edits
    assert second.depends_on == (first.id,)
    assert second.before_text == first.after_text
    final = apply_edits(docs, edits)["plan.md"]
    assert final.count("[NEEDS CLARIFICATION:") == 3
    assert "(details [NEEDS CLARIFICATION: Placeholder TBD left in plan.md line 1])" in final


def test_order_edits_detects_cycles():
    edits = [
        _edit("EDIT-001", depends_on=["EDIT-002"]),
        _edit("EDIT-002", line=2, depends_on=["EDIT-001"]),
        _edit("EDIT-003", line=3),
    ]
    with pytest.raises(RemediationCycleError) as err:
        order_edits(edits)
    assert err.value.edit_ids == ("EDIT-001", "EDIT-002")


def test_order_edits_ignores_unknown_dependencies():
    edits = [_edit("EDIT-002", line=4, depends_on=["EDIT-009"]), _edit("EDIT-001", document="tasks.md")]
    assert [e.id for e in order_edits(edits)] == ["EDIT-002", "EDIT-001"]


def test_stale_edit_is_rejected():
    docs = [parse("spec.md", "one\ntwo\n")]
    with pytest.raises(ValueError):
        apply_edits(docs, [_edit("EDIT-001", line=2, before="three")])


def test_workspace_replace_insert_and_delete():
    space = DocumentWorkspace("a\nb\nc\nd\n")
    space.replace(LineRange(2, 3), "B")
    space.insert(1, "top")
    space.insert(5, "end")
    space.replace(LineRange(4, 4), "")
    assert space.render() == "top\na\nB\nend\n"
    assert space.text_of(LineRange(2, 3)) == "B"
    with pytest.raises(ValueError):
        space.replace(LineRange(5, 5), "x")
    with pytest.raises(ValueError):
        space.insert(6, "x")


def test_single_location_duplication_produces_no_edit(documents):
    finding = canonicalize([Finding("DUP-1", "duplication", "duplication", PARTIAL, HIGH,
                                    (Location("spec.md", LineRange(5, 5)),), "repeated")])
    assert generate([finding], documents, build(documents)) == []
