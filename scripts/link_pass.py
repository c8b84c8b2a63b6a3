#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
linkarr: link pass from an input media tree into a dated output tree.

Every accepted file is hard-linked to <output>/<YYYY>/<MM>/<name> exactly once
per distinct content (SHA-256), across runs, crashes and worker counts.

Usage:
  linkarr [options] <input_dir> <output_dir>
  python -m scripts.link_pass ~/DCIM /Volumes/Data/Photos --database state.db

Highlights:
- Capture time from embedded metadata (exiftool, or Pillow when exiftool is missing),
  filesystem mtime otherwise
- State in SQLite (--database); --delete-copy-state forgets placements but keeps
  the path -> digest cache, so a re-run doesn't re-read unchanged files
- Append-only run log (--log): "finished: <path>" / "skipping handled file <path>"
- Settings from linkarr.toml ([formats], [traversal], [metadata], [pipeline], [paths])
"""

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional

from app.core.config import LinkSettings, load_settings
from app.core.errors import ConfigError, LinkarrError
from app.core.logs import LOGGER, setup_logging
from app.repositories.db import StateStore
from app.services.pipeline import run_pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linkarr",
        usage="%(prog)s [options] input_dir output_dir",
        description="Hard-link media into <output>/<YYYY>/<MM>/ once per distinct content.",
    )
    parser.add_argument("input_dir", nargs="?", help="Tree to scan")
    parser.add_argument("output_dir", nargs="?", help="Root of the dated output tree")
    parser.add_argument("--database", default=None,
                        help="Path to persisted state (default from config: state.db)")
    parser.add_argument("--log", default=None,
                        help="Path to the append-only run log (default from config: actions.log)")
    parser.add_argument("--delete-copy-state", action="store_true",
                        help="Forget placement state before running (the path -> digest cache is kept)")
    parser.add_argument("--config", default=None,
                        help="linkarr.toml to use (default: $LINKARR_CONFIG or ./linkarr.toml)")
    parser.add_argument("--hash-workers", type=int, default=None,
                        help="Concurrent hashing workers (default from config: 3)")
    parser.add_argument("--commit-workers", type=int, default=None,
                        help="Concurrent commit workers (default from config: 1)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Debug output on console and in the run log")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="No console output")
    parser.add_argument("--json-logs", action="store_true",
                        help="Write JSON lines to the run log")
    return parser


def apply_overrides(settings: LinkSettings, args: argparse.Namespace) -> LinkSettings:
    """CLI flags win over linkarr.toml."""
    if args.database:
        settings.database = Path(args.database).expanduser()
    if args.log:
        settings.log = Path(args.log).expanduser()
    for name in ("hash_workers", "commit_workers"):
        value = getattr(args, name)
        if value is not None:
            if value < 1:
                raise ConfigError(f"--{name.replace('_', '-')} must be >= 1")
            setattr(settings, name, value)
    return settings


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # after parsing we should have 2 arguments (input and output)
    if not args.input_dir or not args.output_dir:
        parser.print_usage(sys.stderr)
        return 0

    try:
        settings = apply_overrides(
            load_settings(Path(args.config) if args.config else None), args
        )
    except ConfigError as e:
        sys.stderr.write(f"FATAL: {e}\n")
        return 2

    setup_logging(settings.log, verbose=args.verbose, quiet=args.quiet, json_logs=args.json_logs)
    LOGGER.debug(f"Settings: {settings!r}")

    t0 = time.perf_counter()
    try:
        with StateStore(settings.database) as store:
            if args.delete_copy_state:
                n = store.reset_placements()
                LOGGER.info(f"Deleted copy state ({n} placements); path cache kept")
            stats = run_pipeline(Path(args.input_dir), Path(args.output_dir), store, settings)
    except LinkarrError:
        LOGGER.exception("Link pass failed")
        return 1

    elapsed = time.perf_counter() - t0
    LOGGER.info(
        f"=== Link pass complete: linked={stats['linked']}, skipped={stats['skipped']}, "
        f"resumed={stats['resumed']}. Total time: {elapsed:.1f} seconds ==="
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
