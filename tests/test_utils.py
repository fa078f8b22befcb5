import pytest

from specaudit.models import LineRange, Location
from specaudit.utils import (
    document_matches,
    document_precedence,
    jaccard,
    location_overlap_ratio,
    normalize_value,
    render_table_markdown,
    unit_for_key,
    value_in_unit,
)

PRECEDENCE = ("spec.md", "tasks.md", "plan.md", "data-model.md", "contracts/*")


@pytest.mark.parametrize("raw,key,expected", [
    ("500ms", None, "500ms"),
    ("500 ms", None, "500ms"),
    ("0.5s", None, "500ms"),
    ("300", "OUTLINE_UPDATE_DEBOUNCE_MS", "300ms"),
    ("2", "RETRY_DELAY_SECONDS", "2000ms"),
    ("1,000", "MAX_ITEMS", "1000"),
    ("`Strict`", None, "strict"),
])
def test_normalize_value(raw, key, expected):
    assert normalize_value(raw, key) == expected


def test_value_in_unit():
    assert value_in_unit("500ms", "ms") == "500"
    assert value_in_unit("500ms", "s") == "0.5"
    assert value_in_unit("12px", "ms") is None
    assert value_in_unit("strict", "ms") is None


def test_unit_for_key():
    assert unit_for_key("OUTLINE_UPDATE_DEBOUNCE_MS") == "ms"
    assert unit_for_key("PANEL_WIDTH_PX") == "px"
    assert unit_for_key("MAX_OUTLINE_DEPTH") == ""


def test_document_precedence():
    assert document_precedence("spec.md", PRECEDENCE) == 0
    assert document_precedence("spec.docx", PRECEDENCE) == 0
    assert document_precedence("contracts/api.yaml", PRECEDENCE) == 4
    assert document_precedence("notes.md", PRECEDENCE) == len(PRECEDENCE)
    assert document_matches("contracts/api.yaml", "contracts/*")


def test_overlap_and_similarity():
    a = [Location("spec.md", LineRange(1, 4))]
    b = [Location("spec.md", LineRange(3, 6)), Location("plan.md", LineRange(1, 1))]
    assert location_overlap_ratio(a, b) == pytest.approx(2 / 6)
    assert location_overlap_ratio(a, [Location("plan.md", LineRange(1, 4))]) == 0.0
    assert jaccard("Vague term 'fast'", "vague TERM fast") == 1.0
    assert jaccard("", "") == 1.0


def test_render_table_markdown_escapes_pipes_and_pads_rows():
    table = render_table_markdown(["A", "B"], [["x|y"], ["1", "2", "3"]])
    assert table.splitlines() == [
        "| A | B |",
        "| --- | --- |",
        "| x\\|y |  |",
        "| 1 | 2 |",
    ]
    assert render_table_markdown([], []) == ""
