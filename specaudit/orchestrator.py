# orchestrator.py
"""
Pass orchestration.

Every Detector runs on its own daemon thread against the same read-only
(documents, graph) pair. The orchestrator is the only synchronization
point: it waits for every pass to finish, fail or time out, then returns
all findings in a completion-order independent order. A timed-out pass is
abandoned; its thread never keeps the interpreter alive.
"""

import dataclasses
import logging
import math
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from specaudit.config import DEFAULTS, OrchestratorConfig
from specaudit.detectors import Detector
from specaudit.errors import PassConfigurationError
from specaudit.findings import finding_sort_key, normalize_severity
from specaudit.models import CrossReferenceGraph, Document, Finding, PassFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestratorResult:
    findings: Tuple[Finding, ...]
    failures: Tuple[PassFailure, ...]


class PassOrchestrator:
    """Runs Detector passes concurrently with per-pass failure isolation."""

    def __init__(self, cfg: Optional[OrchestratorConfig] = None):
        self.cfg = cfg or DEFAULTS.orchestrator

    def run(
        self,
        documents: Sequence[Document],
        graph: CrossReferenceGraph,
        passes: Sequence[Detector],
    ) -> OrchestratorResult:
        documents = tuple(documents)
        names = [p.name for p in passes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise PassConfigurationError(f"duplicate pass names: {', '.join(duplicates)}")
        if not passes:
            return OrchestratorResult((), ())

        workers = max(1, min(int(self.cfg.max_workers), len(passes)))
        timeout = float(self.cfg.pass_timeout_s)
        # Queued passes wait for a free worker; bound the whole run as well
        run_deadline = time.monotonic() + timeout * (math.ceil(len(passes) / workers) + 1)

        outcomes: "queue.Queue[Tuple[str, bool, object]]" = queue.Queue()
        waiting = deque(passes)
        running: Dict[str, float] = {}
        results: Dict[str, List[Finding]] = {}
        failures: Dict[str, PassFailure] = {}

        while waiting or running:
            while waiting and len(running) < workers:
                detector = waiting.popleft()
                running[detector.name] = time.monotonic()
                threading.Thread(
                    target=self._worker,
                    args=(detector, documents, graph, outcomes),
                    name=f"specaudit-pass-{detector.name}",
                    daemon=True,
                ).start()

            for name, ok, value in self._drain(outcomes):
                # Abandoned passes may still report; nothing they produce is read
                if running.pop(name, None) is None:
                    continue
                if ok:
                    results[name] = value
                    logger.info("Pass %s produced %d finding(s)", name, len(value))
                else:
                    failures[name] = PassFailure(name, f"{type(value).__name__}: {value}")
                    logger.warning("Pass %s failed: %s", name, value)

            now = time.monotonic()
            for name, began in list(running.items()):
                if now - began > timeout or now > run_deadline:
                    del running[name]
                    failures[name] = PassFailure(name, f"timed out after {timeout:g}s", timed_out=True)
                    logger.warning("Pass %s timed out after %gs; abandoning its worker", name, timeout)
            if now > run_deadline:
                while waiting:
                    name = waiting.popleft().name
                    failures[name] = PassFailure(name, f"timed out after {timeout:g}s", timed_out=True)
                    logger.warning("Pass %s never started before the run deadline", name)

        findings = sorted((f for name in names for f in results.get(name, [])), key=finding_sort_key)
        ordered_failures = tuple(failures[name] for name in names if name in failures)
        return OrchestratorResult(tuple(findings), ordered_failures)

    def _drain(self, outcomes: "queue.Queue[Tuple[str, bool, object]]") -> List[Tuple[str, bool, object]]:
        try:
            drained = [outcomes.get(timeout=self.cfg.poll_interval_s)]
        except queue.Empty:
            return []
        while True:
            try:
                drained.append(outcomes.get_nowait())
            except queue.Empty:
                return drained

    def _worker(
        self,
        detector: Detector,
        documents: Tuple[Document, ...],
        graph: CrossReferenceGraph,
        outcomes: "queue.Queue[Tuple[str, bool, object]]",
    ) -> None:
        try:
            findings = self._invoke(detector, documents, graph)
        except Exception as exc:
            outcomes.put((detector.name, False, exc))
        else:
            outcomes.put((detector.name, True, findings))

    def _invoke(
        self,
        detector: Detector,
        documents: Tuple[Document, ...],
        graph: CrossReferenceGraph,
    ) -> List[Finding]:
        produced = detector.detect(documents, graph)
        if produced is None:
            raise TypeError(f"pass {detector.name} returned None instead of a finding list")

        findings: List[Finding] = []
        seen_ids = set()
        for finding in produced:
            if not isinstance(finding, Finding):
                raise TypeError(f"pass {detector.name} returned {type(finding).__name__}, expected Finding")
            if finding.id in seen_ids:
                raise ValueError(f"pass {detector.name} emitted finding id {finding.id} twice")
            seen_ids.add(finding.id)
            if finding.pass_name != detector.name:
                finding = dataclasses.replace(finding, pass_name=detector.name)
            findings.append(normalize_severity(finding))
        return findings


def run(
    documents: Sequence[Document],
    graph: CrossReferenceGraph,
    passes: Sequence[Detector],
    cfg: Optional[OrchestratorConfig] = None,
) -> OrchestratorResult:
    return PassOrchestrator(cfg).run(documents, graph, passes)
