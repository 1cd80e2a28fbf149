#!/usr/bin/env python3
"""
Operator tooling for print batches.

Usage:
    acredita-print-batches cleanup [--days 90]
    acredita-print-batches status

``cleanup`` archives ready batches older than --days and deletes their
documents.  Failed batches are kept so they can still be retried.  Running
it twice is harmless: the second run finds nothing.
``status`` lists batches still queued or processing.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from scripts._runtime import bootstrap, resolve_actor


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acredita-print-batches",
        description="Maintain print batches.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config override.")
    parser.add_argument("--actor-id", default=None, help="Actor UUID checked by the gate.")
    sub = parser.add_subparsers(dest="command", required=True)
    cleanup = sub.add_parser("cleanup", help="Archive old batches and delete their files.")
    cleanup.add_argument(
        "--days", type=int, default=None,
        help="Age threshold in days (default: config, 90).",
    )
    sub.add_parser("status", help="List queued and processing batches.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.command == "cleanup" and args.days is not None and args.days <= 0:
        print("ERROR: --days must be greater than zero", file=sys.stderr)
        return 1

    try:
        actor_id = resolve_actor(args.actor_id)
    except ValueError:
        print(f"ERROR: Invalid actor id: {args.actor_id}", file=sys.stderr)
        return 1

    try:
        config = bootstrap(args.config)
    except Exception as e:
        print(f"ERROR: Startup failed: {e}", file=sys.stderr)
        return 1

    from acredita_batch.orchestrator import AccreditationOrchestrator
    from acredita_kernel.db.engine import get_session

    session = get_session()
    try:
        orchestrator = AccreditationOrchestrator.from_session(
            session, config=config, actor_id=actor_id,
        )
        batches = orchestrator.print_batches
        if args.command == "cleanup":
            days = args.days if args.days is not None else config.print_batches.retention_days
            result = batches.cleanup_old_batches(actor_id, days)
            session.commit()
            print(f"Batches older than {days} day(s):")
            print(f"  cleaned_files:    {result.cleaned_files}")
            print(f"  archived_batches: {result.archived_batches}")
            print(f"  total_processed:  {result.total_processed}")
        else:
            in_flight = batches.get_processing_batches()
            if not in_flight:
                print("No batches in progress.")
            for progress in in_flight:
                print(
                    f"  {progress.batch_id} {progress.status.value:<10} "
                    f"{progress.processed_credentials}/{progress.total_credentials} "
                    f"({progress.progress_percentage:.0f}%)"
                )
    except Exception as e:
        session.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
