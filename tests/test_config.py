import logging

import pytest

from specaudit.config import AppConfig, load_config
from specaudit.errors import ConfigError


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_config(root=tmp_path)
    assert cfg == AppConfig()
    assert cfg.remediation.precedence[0] == "spec.md"
    assert cfg.default_passes == ["coverage", "ambiguity", "underspecification", "duplication"]


def test_toml_sections_override_fields(tmp_path):
    path = tmp_path / "specaudit.toml"
    path.write_text(
        'passes = ["coverage"]\n'
        "[orchestrator]\nmax_workers = 2\npass_timeout_s = 5.0\n"
        '[remediation]\nprecedence = ["plan.md", "spec.md"]\n'
        '[llm]\nmodel = "gemini-2.5-pro"\nupload_documents = true\n',
        encoding="utf-8",
    )
    cfg = load_config(root=tmp_path)
    assert cfg.default_passes == ["coverage"]
    assert cfg.orchestrator.max_workers == 2
    assert cfg.orchestrator.pass_timeout_s == 5.0
    assert cfg.remediation.precedence == ("plan.md", "spec.md")
    assert cfg.llm.model == "gemini-2.5-pro"
    assert cfg.llm.upload_documents is True


def test_unknown_keys_are_ignored_with_a_warning(tmp_path, caplog):
    path = tmp_path / "custom.toml"
    path.write_text("[dedup]\noverlap = 0.9\nsummary_similarity = 0.8\n", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="specaudit.config"):
        cfg = load_config(path)
    assert cfg.dedup.summary_similarity == 0.8
    assert not hasattr(cfg.dedup, "overlap")
    assert "[dedup].overlap" in caplog.text


def test_configs_do_not_share_state(tmp_path):
    first = load_config(root=tmp_path)
    first.orchestrator.max_workers = 9
    assert load_config(root=tmp_path).orchestrator.max_workers == 4


def test_malformed_toml_raises_config_error(tmp_path):
    path = tmp_path / "specaudit.toml"
    path.write_text("[orchestrator\nmax_workers = 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid config"):
        load_config(root=tmp_path)
