# pipeline.py
"""
End-to-end analysis run:

    ingest -> graph -> passes -> severity/dedup -> coverage -> remediation

Every stage receives the previous stage's immutable output; nothing is
written to disk here.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence

from specaudit.config import DEFAULTS, AppConfig
from specaudit.coverage import coverage_matrix
from specaudit.detectors import Detector, resolve_passes
from specaudit.findings import Deduplicator
from specaudit.models import AnalysisReport, Document, frozen_counter
from specaudit.orchestrator import PassOrchestrator
from specaudit.remediation import RemediationGenerator
from specaudit.spec_ingestor import SpecIngestor
from specaudit.utils import document_matches
from specaudit.xref_graph import GraphBuilder

logger = logging.getLogger(__name__)


def _missing_documents(documents: Sequence[Document], cfg: AppConfig) -> Counter:
    missing: Counter = Counter()
    for name in cfg.ingest.recognized_files:
        if not any(document_matches(doc.path, name) for doc in documents):
            missing[f"missing-document:{name}"] += 1
    return missing


def analyze_documents(
    documents: Sequence[Document],
    passes: Sequence[Detector],
    cfg: Optional[AppConfig] = None,
    threshold: Optional[str] = None,
) -> AnalysisReport:
    """Run every stage after ingestion over already-parsed documents."""
    cfg = cfg or DEFAULTS
    documents = tuple(sorted(documents, key=lambda d: d.path))
    threshold = (threshold or cfg.remediation.threshold).upper()

    graph = GraphBuilder(cfg.graph).build(documents)
    logger.info("Graph: %d node(s), %d edge(s)", len(graph.nodes), len(graph.edges))

    result = PassOrchestrator(cfg.orchestrator).run(documents, graph, passes)
    canonical = Deduplicator(cfg.dedup).deduplicate(result.findings)
    logger.info("%d finding(s) merged into %d canonical finding(s)", len(result.findings), len(canonical))

    coverage = coverage_matrix(documents, graph, cfg.remediation.tasks_document)
    edits = RemediationGenerator(cfg.remediation).generate(canonical, documents, graph, threshold)

    warnings = Counter(dict(graph.warnings))
    warnings.update(_missing_documents(documents, cfg))
    if result.failures:
        warnings["pass-failure"] += len(result.failures)

    return AnalysisReport(
        documents=tuple(d.path for d in documents),
        findings=result.findings,
        canonical_findings=tuple(canonical),
        failures=result.failures,
        coverage=coverage,
        edits=tuple(edits),
        warnings=frozen_counter(warnings),
        passes=tuple(p.name for p in passes),
        threshold=threshold,
    )


def run_pipeline(
    directory,
    pass_names: Optional[Sequence[str]] = None,
    threshold: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
    client=None,
) -> AnalysisReport:
    """
    Analyse the recognized documents in ``directory``.

    Raises IngestionError for an unreadable input, PassConfigurationError for
    a bad pass list and RemediationCycleError for a cyclic edit plan; every
    other problem ends up in the report.
    """
    cfg = cfg or DEFAULTS
    names = list(pass_names) if pass_names else list(cfg.default_passes)
    passes = resolve_passes(names, cfg, client)
    documents = SpecIngestor(cfg.ingest).load_directory(Path(directory))
    return analyze_documents(documents, passes, cfg, threshold)
