"""Small in-memory design documents shared by the tests."""

SPEC_MD = (
    "# Feature Specification: Outline Panel\n"
    "\n"
    "## Requirements\n"
    "\n"
    "- **FR-010**: System MUST refresh the outline within `OUTLINE_UPDATE_DEBOUNCE_MS` 500ms of an edit.\n"
    "- **FR-011**: System MUST keep the outline fast for large documents.\n"
    "- **FR-012**: System MUST export the outline as JSON (format TBD).\n"
    "- **FR-017a**: System MUST collapse nested headings.\n"
    "\n"
    "## Success Criteria\n"
    "\n"
    "- **SC-004**: Outline refresh satisfies FR-011 for 95% of edits.\n"
)

TASKS_MD = (
    "# Tasks\n"
    "\n"
    "- [ ] T020 Implement outline refresh for FR-010\n"
    "- [ ] T021 [P] Collapse nested headings for FR-017a\n"
    "- [ ] T030 Configure the CI pipeline\n"
)

DATA_MODEL_MD = (
    "# Data Model\n"
    "\n"
    "OUTLINE_UPDATE_DEBOUNCE_MS = 300\n"
    "MAX_OUTLINE_DEPTH = 6\n"
)

TEXTS = {
    "spec.md": SPEC_MD,
    "tasks.md": TASKS_MD,
    "data-model.md": DATA_MODEL_MD,
}


def doc_by_path(documents, path):
    return next(d for d in documents if d.path == path)


def write_docs(directory, texts=None):
    for name, text in (texts or TEXTS).items():
        target = directory / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return directory
