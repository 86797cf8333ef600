#!/usr/bin/env python3
"""
Resolve targets against a package index loaded from a JSON file or MongoDB.

Single run prints the install plan (or the conflict trace); --batch resolves one
target set per line of a file and writes results to CSV.

Usage:
  python -m modsolver.run --index-json index.json foo bar --constraint "bar<2" [--output plan.json]
  python -m modsolver.run --mongo-uri mongodb://localhost:27017 --batch targets.txt --output-dir output
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from typing import List, Optional, Sequence

from pymongo import MongoClient
from tqdm import tqdm

from modsolver.entrypoint import ResolutionRunner
from modsolver.errors import MalformedIndexError, MalformedRecordError
from modsolver.explorer import LoggingReporter
from modsolver.index import Index
from modsolver.loader import iter_collection_records, load_constraints, parse_record, read_json_records
from modsolver.preferences import POLICIES
from modsolver.settings import SolverSettings
from modsolver.structures import Environment


def configure_logging(debug: bool = False) -> None:
    """Warnings only, or every search decision with --debug. Output goes to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Resolve package targets into an install plan.")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--index-json", help="JSON file with package records")
    src.add_argument("--mongo-uri", help="MongoDB connection URI holding package records")
    ap.add_argument("--db", default="packages", help="Database name for the package collection")
    ap.add_argument("--collection", default="package_index", help="Collection with one record per instance")
    ap.add_argument("--batch-size", type=int, default=50_000, help="Cursor batch size when streaming records")

    ap.add_argument("targets", nargs="*", help="Root packages to resolve")
    ap.add_argument("--constraint", action="append", default=[], help='e.g. "foo>=1.2", "foo +tests -debug"')
    ap.add_argument("--batch", default=None, help="File with one whitespace-separated target set per line")

    ap.add_argument("--os", default="linux")
    ap.add_argument("--arch", default="x86_64")
    ap.add_argument("--compiler", default="ghc")

    ap.add_argument("--prefer", default="newest", choices=sorted(POLICIES), help="Instance preference policy")
    ap.add_argument("--max-backjumps", type=int, default=None, help="Give up after this many backjumps")
    ap.add_argument("--bootstrap-package", default="base", help="Package every build is linked against")

    ap.add_argument("--output", default=None, help="Write the plan as JSON to this file")
    ap.add_argument("--output-dir", default="output", help="Output directory for --batch results")
    ap.add_argument("--debug", action="store_true", help="Log every search decision")

    args = ap.parse_args(argv)
    if not args.targets and not args.batch:
        ap.error("give targets or --batch")
    return args


def load_index(args: argparse.Namespace, env: Environment) -> Index:
    if args.index_json:
        records = read_json_records(args.index_json)
        source = args.index_json
    else:
        client = MongoClient(args.mongo_uri)
        try:
            records = list(iter_collection_records(client[args.db][args.collection], args.batch_size))
        finally:
            client.close()
        source = f"{args.db}.{args.collection}"
    entries = [parse_record(r, env) for r in tqdm(records, desc=f"Parse records ({source})")]
    return Index.build(entries)


def read_batch(path: str) -> List[List[str]]:
    with open(path, "r", encoding="utf-8") as f:
        return [line.split() for line in f if line.strip() and not line.startswith("#")]


def run_batch(runner: ResolutionRunner, args: argparse.Namespace, constraints) -> None:
    target_sets = read_batch(args.batch)
    os.makedirs(args.output_dir, exist_ok=True)
    csv_path = os.path.join(args.output_dir, os.path.splitext(os.path.basename(args.batch))[0] + ".csv")

    num_resolved = 0
    with open(csv_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["targets", "resolved", "plan_size", "plan"])
        for targets in tqdm(target_sets, desc="Resolve"):
            resolved, plan, _failure = runner.try_resolve(targets, constraints)
            if resolved:
                num_resolved += 1
                writer.writerow([" ".join(targets), True, len(plan), " ".join(str(e) for e in plan)])
            else:
                writer.writerow([" ".join(targets), False, "", ""])

    print(f"[output] Wrote {csv_path}")
    print(f"  Target sets: {len(target_sets):,}  resolved: {num_resolved:,}")


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)

    env = Environment(compiler=args.compiler, os=args.os, arch=args.arch)
    settings = SolverSettings(
        bootstrap_package=args.bootstrap_package,
        max_backjumps=args.max_backjumps,
        preference=args.prefer,
    )
    try:
        constraints = load_constraints(args.constraint)
        print("[load] Loading package index ...")
        index = load_index(args, env)
    except (MalformedRecordError, MalformedIndexError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    print(f"[load] {len(index):,} packages, {index.instance_count():,} instances")

    runner = ResolutionRunner(index, settings, reporter=LoggingReporter() if args.debug else None)
    if args.batch:
        run_batch(runner, args, constraints)
        return 0

    resolved, plan, failure = runner.try_resolve(args.targets, constraints)
    if not resolved:
        print(failure.render() if failure is not None else "resolution failed", file=sys.stderr)
        return 1

    for entry in plan:
        print(f"  {entry}")
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(plan.to_dict(), f, indent=2)
        print(f"[output] Wrote {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(run())
