# run.py
"""
Command line entry point.

    specaudit analyze <dir> [--passes a,b] [--threshold MEDIUM] [--format markdown]

Exit codes: 0 when a report was produced (whatever it contains), 2 for
input, config-file, argument or pass-configuration errors, 3 for a cyclic
remediation plan.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from specaudit import __version__
from specaudit.config import load_config
from specaudit.detectors import available_passes
from specaudit.errors import ConfigError, IngestionError, PassConfigurationError, RemediationCycleError
from specaudit.models import SEVERITIES
from specaudit.pipeline import run_pipeline
from specaudit.report import FORMATS, serialize

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 2
EXIT_CYCLE = 3


def _pass_list(value: str) -> List[str]:
    names = [v.strip() for v in value.split(",") if v.strip()]
    if not names:
        raise argparse.ArgumentTypeError("expected a comma-separated list of pass names")
    return names


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="specaudit", description="Analyse structured design documents")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    an = sub.add_parser("analyze", help="Analyse spec.md, plan.md, tasks.md, data-model.md and contracts/")
    an.add_argument("directory", help="Directory holding the documents")
    an.add_argument("--passes", type=_pass_list, default=None,
                    help="Comma-separated pass names (available: %s)" % ", ".join(available_passes()))
    an.add_argument("--threshold", type=str.upper, choices=SEVERITIES, default=None,
                    help="Lowest severity that gets remediation edits (default MEDIUM)")
    an.add_argument("--format", dest="fmt", choices=FORMATS, default="markdown")
    an.add_argument("--output", "-o", default=None, help="Write the report here instead of stdout")
    an.add_argument("--config", default=None, help="TOML configuration file (default ./specaudit.toml)")
    an.add_argument("--timeout", type=float, default=None, help="Per-pass timeout in seconds")
    an.add_argument("--workers", type=int, default=None, help="Concurrent pass workers")
    an.add_argument("--verbose", "-v", action="count", default=0)
    return ap


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def analyze(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(Path(args.config) if args.config else None)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    if args.timeout is not None:
        cfg.orchestrator.pass_timeout_s = args.timeout
    if args.workers is not None:
        cfg.orchestrator.max_workers = max(1, args.workers)

    try:
        report = run_pipeline(args.directory, args.passes, args.threshold, cfg)
    except (IngestionError, PassConfigurationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except RemediationCycleError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CYCLE

    text = serialize(report, args.fmt)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        logger.info("Report written to %s", args.output)
    else:
        sys.stdout.write(text)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    try:
        args = ap.parse_args(argv)
    except SystemExit as exc:
        # argparse exits 2 on bad arguments and 0 for --help/--version
        return int(exc.code or 0)
    _configure_logging(args.verbose)
    return analyze(args)


if __name__ == "__main__":
    sys.exit(main())
