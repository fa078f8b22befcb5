# config.py
import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from specaudit.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "specaudit.toml"


@dataclass
class IngestConfig:
    # Recognized inputs, relative to the analysed directory
    recognized_files: Tuple[str, ...] = ("spec.md", "plan.md", "tasks.md", "data-model.md")
    contracts_dir: str = "contracts"
    # spec.docx etc. are accepted in place of the markdown file
    accept_docx: bool = True
    include_tables: bool = True
    # e.g. "## 4.1 Document Model"
    section_header_regex: str = r"^(#{1,6})\s+(.+?)\s*#*\s*$"
    # `CONST_NAME` followed by a numeric literal within this many characters
    constant_value_window: int = 40


@dataclass
class GraphConfig:
    # Mentions further apart than this many tokens on one line are not linked
    token_window: int = 40


@dataclass
class OrchestratorConfig:
    max_workers: int = 4
    pass_timeout_s: float = 120.0
    poll_interval_s: float = 0.05


@dataclass
class DedupConfig:
    overlap_ratio: float = 0.5
    summary_similarity: float = 0.6


@dataclass
class RemediationConfig:
    threshold: str = "MEDIUM"
    precedence: Tuple[str, ...] = ("spec.md", "tasks.md", "plan.md", "data-model.md", "contracts/*")
    tasks_document: str = "tasks.md"


@dataclass
class LLMConfig:
    model: str = "gemini-2.5-flash"
    temperature: float = 0.1
    api_key_env: str = "GOOGLE_API_KEY"
    # Upload documents as files instead of inlining numbered text
    upload_documents: bool = False
    # Requests per pass before a schema-invalid reply becomes a pass failure
    max_attempts: int = 2


@dataclass
class AppConfig:
    ingest: IngestConfig = field(default_factory=IngestConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    remediation: RemediationConfig = field(default_factory=RemediationConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    default_passes: List[str] = field(
        default_factory=lambda: ["coverage", "ambiguity", "underspecification", "duplication"]
    )


# Global defaults used across modules
DEFAULTS = AppConfig()


def _apply_section(target: Any, table: Dict[str, Any], section_name: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in table.items():
        if key not in known:
            logger.warning("Ignoring unknown config key [%s].%s", section_name, key)
            continue
        current = getattr(target, key)
        if isinstance(current, tuple) and isinstance(value, list):
            value = tuple(value)
        setattr(target, key, value)


def load_config(path: Optional[Path] = None, root: Optional[Path] = None) -> AppConfig:
    """
    Build an AppConfig from an optional TOML file.

    Tables named after the AppConfig sections override dataclass fields by
    name; a missing file yields the defaults.
    """
    if path is None:
        path = (root or Path.cwd()) / DEFAULT_CONFIG_NAME
    cfg = AppConfig()
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return cfg
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc

    for section in ("ingest", "graph", "orchestrator", "dedup", "remediation", "llm"):
        table = data.get(section)
        if isinstance(table, dict):
            _apply_section(getattr(cfg, section), table, section)
    passes = data.get("passes")
    if isinstance(passes, list):
        cfg.default_passes = [str(p) for p in passes]
    return cfg
