#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
linkarr DB tools: small CLI for inspecting (and resetting) the state database.

Examples:
  # point at the database from linkarr.toml (default ./state.db)
  linkarr-db states
  linkarr-db cache
  linkarr-db runs --limit 5
  linkarr-db pending

  # what do we know about a source file?
  linkarr-db lookup ~/DCIM/100APPLE/IMG_0001.JPG

  # forget placements (path -> digest cache is kept)
  linkarr-db --db /Volumes/Data/state.db reset-placements
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from app.core.config import load_settings
from app.core.errors import LinkarrError
from app.repositories.db import PlacementState, StateStore

# ------- tiny table printer (stdlib only) -------

def _stringify(x):
    if x is None:
        return ""
    return str(x)

def print_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
    cols = len(headers)
    widths = [len(h) for h in headers]
    srows = []
    for row in rows:
        srow = [_stringify(v) for v in row]
        srows.append(srow)
        for i in range(cols):
            widths[i] = max(widths[i], len(srow[i]) if i < len(srow) else 0)

    def fmt_row(vals):
        return "  " + " | ".join(v.ljust(widths[i]) for i, v in enumerate(vals))

    if headers:
        print(fmt_row(headers))
        print("  " + "-+-".join("-" * w for w in widths))

    for r in srows:
        print(fmt_row(r))

# ------- commands -------

def cmd_states(store: StateStore, args) -> None:
    counts = store.state_counts()
    print_table(["state", "cnt"], [(s.name.lower(), n) for s, n in counts.items()])

def cmd_cache(store: StateStore, args) -> None:
    print_table(["cached_paths"], [(store.cache_size(),)])

def cmd_runs(store: StateStore, args) -> None:
    runs = store.recent_runs(args.limit)
    headers = ["id", "status", "started_at", "finished_at", "input_root", "output_root"]
    print_table(headers, [[r[h] for h in headers] for r in runs])

def cmd_lookup(store: StateStore, args) -> None:
    key = store.lookup_cached_key(args.path)
    if key is None:
        print(f"not hashed yet: {args.path}")
        return
    placement = store.get_placement(key) or {"state": PlacementState.ABSENT}
    print_table(
        ["content_key", "state", "target_path", "run_id"],
        [(key.hex(), placement["state"].name.lower(),
          placement.get("target_path"), placement.get("run_id"))],
    )

def cmd_pending(store: StateStore, args) -> None:
    """Keys claimed by a run that never reached Copied; the next pass reclaims them."""
    rows = []
    for key in store.keys_in_state(PlacementState.DISCOVERED):
        p = store.get_placement(key) or {}
        rows.append((key.hex(), p.get("source_path"), p.get("target_path"), p.get("run_id")))
    print_table(["content_key", "source_path", "target_path", "run_id"], rows)

def cmd_reset(store: StateStore, args) -> None:
    n = store.reset_placements()
    print(f"Deleted {n} placements; path cache kept ({store.cache_size()} entries).")

# ------- main -------

def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="linkarr-db", description="linkarr state DB helper")
    ap.add_argument("--db", default=None,
                    help="Path to the state database (default from linkarr.toml: state.db)")
    ap.add_argument("--config", default=None, help="linkarr.toml to read defaults from")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("states", help="Count placements per state").set_defaults(func=cmd_states)
    sub.add_parser("cache", help="Size of the path -> digest cache").set_defaults(func=cmd_cache)

    spr = sub.add_parser("runs", help="List recent link passes")
    spr.add_argument("--limit", type=int, default=20)
    spr.set_defaults(func=cmd_runs)

    spl = sub.add_parser("lookup", help="Cached digest and placement for a source path")
    spl.add_argument("path")
    spl.set_defaults(func=cmd_lookup)

    sub.add_parser("pending", help="Placements stuck in Discovered").set_defaults(func=cmd_pending)

    sub.add_parser("reset-placements",
                   help="Forget all placements, keep the path cache").set_defaults(func=cmd_reset)

    args = ap.parse_args(argv)
    try:
        db = Path(args.db) if args.db else load_settings(
            Path(args.config) if args.config else None).database
        with StateStore(db.expanduser().resolve()) as store:
            args.func(store, args)
    except LinkarrError as e:
        sys.stderr.write(f"FATAL: {e}\n")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
