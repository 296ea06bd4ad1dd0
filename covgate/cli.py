#!/usr/bin/env python3
"""
Coverage gate: run an instrumented build's tests and examples, merge their
profile fragments and fail when line coverage is below the threshold.

Usage:
  covgate                          # lcov report in coverage/lcov.info, then gate
  covgate html                     # browsable report in coverage/
  covgate --check                  # no report, only the verdict line
  covgate --required 90 -j 8       # 90% threshold, 8 binaries in parallel
  covgate --ignore '*vendor*'      # extra source globs to leave out

Exit code 0 = pass, 1 = coverage below threshold, 2 = pipeline error
(build missing, binary failed to launch or timed out, tools missing).
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import GateConfig
from .errors import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, EXIT_POLICY, CoverageGateError
from .pipeline import run_pipeline
from .report import FORMATS, write_report

LOGGER = logging.getLogger("covgate")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="covgate",
        description="Run instrumented binaries, merge coverage and enforce a minimum",
    )
    parser.add_argument("format", nargs="?", default="lcov", choices=FORMATS,
                        help="Report format (default: lcov)")
    parser.add_argument("--check", action="store_true",
                        help="Skip the report and only print the verdict")
    parser.add_argument("-o", "--output", type=Path,
                        help="Report file or directory (default depends on format)")
    parser.add_argument("--required", type=float,
                        help="Required line coverage percent (default: $COVGATE_REQUIRED or 100)")
    parser.add_argument("--build-dir", type=Path, help="Instrumented build directory")
    parser.add_argument("--source-root", type=Path, help="Project root (default: .)")
    parser.add_argument("--fragment-dir", type=Path, help="Where profile fragments are written")
    parser.add_argument("--ignore", action="append", metavar="GLOB",
                        help="Source file glob to exclude (repeatable; replaces $COVGATE_IGNORE)")
    parser.add_argument("--keep-not-existing", action="store_true",
                        help="Keep source files that do not exist on disk")
    parser.add_argument("--timeout", type=float, help="Per-binary timeout in seconds")
    parser.add_argument("-j", "--jobs", type=int, help="Parallel binaries (0 = CPU count)")
    parser.add_argument("-f", "--filter", default=None, help="Regex filter for binary names")
    parser.add_argument("--clean", action="store_true",
                        help="Delete fragments left by earlier runs before running")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def configure_logging(verbose: bool):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    LOGGER.handlers[:] = [handler]
    LOGGER.setLevel(logging.DEBUG if verbose else logging.WARNING)


def load_config(args, environ=None) -> GateConfig:
    config = GateConfig.from_env(environ)
    return config.with_overrides(
        required=args.required,
        build_dir=args.build_dir,
        source_root=args.source_root,
        fragment_dir=args.fragment_dir,
        ignore=tuple(args.ignore) if args.ignore else None,
        ignore_not_existing=False if args.keep_not_existing else None,
        timeout=args.timeout,
        jobs=args.jobs,
        name_filter=args.filter,
        clean=True if args.clean else None,
    )


def main(argv=None, environ=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = load_config(args, environ)
        result = run_pipeline(config)
    except CoverageGateError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED

    verdict = result.verdict
    if not args.check:
        path = write_report(args.format, result.merge.model, result.summary,
                            args.output, config.source_root)
        if path is not None:
            print(f"Report: {path}")

    if result.summary.warnings:
        print(f"{len(result.summary.warnings)} fragment(s) skipped; coverage may be understated",
              file=sys.stderr)
    print(verdict.message)
    return EXIT_OK if verdict.passed else EXIT_POLICY


if __name__ == "__main__":
    sys.exit(main())
