#!/usr/bin/env python3
"""
Bulk-approve every pending accreditation request of an area and queue print batches.

For each active provider of the area (or each --provider given), drafts are
submitted, approvable requests are approved in chunks, credential generation
is awaited, and one print batch per event is queued.

Usage:
    acredita-approve-area AREA_ID [options]

Examples:
    # See what would happen, without touching anything
    acredita-approve-area 6f1c... --dry-run

    # Smaller chunks, longer pause, keep going past failing providers
    acredita-approve-area 6f1c... --batch-size 50 --wait-time 30 --skip-errors

Pauses follow each approved chunk and each provider that did work.  There is
no pause after a provider that was skipped (nothing pending and no ready
credentials to print) or after the last provider.  Dry runs never pause.

Exit status is 0 on full success and 1 when a provider failed (without
--skip-errors) or the run was interrupted.
"""

from __future__ import annotations

import argparse
import signal
import sys
from typing import TYPE_CHECKING, Sequence
from uuid import UUID

from scripts._runtime import bootstrap, resolve_actor

if TYPE_CHECKING:
    from acredita_batch.domain.types import RunSummary


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acredita-approve-area",
        description="Submit, approve and batch-print all pending requests of an area.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("area_id", type=UUID, help="Area whose providers are processed.")
    parser.add_argument(
        "--batch-size", type=int, default=None,
        help="Requests approved per transaction (default: config, 100).",
    )
    parser.add_argument(
        "--wait-time", type=float, default=None,
        help=(
            "Seconds to pause between chunks and providers (default: config, 10). "
            "No pause follows a skipped provider or the last provider."
        ),
    )
    parser.add_argument(
        "--no-wait-credentials", action="store_true",
        help="Do not wait for credential generation before queueing print batches.",
    )
    parser.add_argument(
        "--max-wait", type=float, default=None,
        help="Maximum seconds to wait for credentials per provider (default: config, 300).",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Report what would be done; no changes and no pauses.",
    )
    parser.add_argument(
        "--skip-errors", action="store_true",
        help="Continue with the next provider after a failure.",
    )
    parser.add_argument(
        "--provider", dest="providers", type=UUID, action="append", default=[],
        help="Restrict the run to this provider (repeatable).",
    )
    parser.add_argument("--actor-id", default=None, help="Actor UUID recorded on transitions.")
    parser.add_argument("--config", default=None, help="Path to a YAML config override.")
    return parser.parse_args(argv)


def format_summary(summary: RunSummary) -> str:
    """Render the run summary as a fixed-width text table."""
    header = f"{'Provider':<30} {'Total':>6} {'Subm.':>6} {'Appr.':>6} {'Ready':>6} {'Batches':>8}  Status"
    lines = [
        f"Area {summary.area_id}" + ("  [DRY RUN]" if summary.dry_run else ""),
        header,
        "-" * len(header),
    ]
    for unit in summary.units:
        if unit.skipped:
            status = "skipped"
        elif unit.failed:
            status = "ERROR"
        elif unit.resumed:
            status = "resumed"
        elif unit.wait_timed_out:
            status = "timeout"
        else:
            status = "ok"
        lines.append(
            f"{unit.unit_name[:30]:<30} {unit.total:>6} {unit.submitted:>6} "
            f"{unit.approved:>6} {unit.credentials_ready:>6} {len(unit.print_batches):>8}  {status}"
        )
    lines.append("-" * len(header))
    lines.append(
        f"{'TOTAL':<30} {summary.total_requests:>6} {summary.total_submitted:>6} "
        f"{summary.total_approved:>6} {summary.credentials_ready:>6} {summary.batches_created:>8}"
    )
    for unit in summary.units:
        for batch in unit.print_batches:
            label = batch.batch_id if batch.batch_id is not None else "(would queue)"
            lines.append(
                f"  batch {label}: {batch.credential_count} credential(s) "
                f"for {unit.unit_name}, event {batch.event_id}"
            )
    if summary.errors:
        lines.append("")
        lines.append(f"Errors ({len(summary.errors)}):")
        for error in summary.errors:
            target = f" request {error.request_id}" if error.request_id else ""
            lines.append(f"  [{error.unit_name}] {error.stage}{target}: {error.message}")
    if summary.aborted:
        lines.append("Run aborted before all providers were processed.")
    return "\n".join(lines)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.batch_size is not None and args.batch_size <= 0:
        print("ERROR: --batch-size must be greater than zero", file=sys.stderr)
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
    from acredita_batch.services.pacing import Pacer
    from acredita_kernel.db.engine import get_session, get_session_factory

    session = get_session()
    pacer = Pacer()
    try:
        orchestrator = AccreditationOrchestrator.from_session(
            session, config=config, actor_id=actor_id,
        )
        options = orchestrator.bulk_options(
            args.area_id,
            batch_size=args.batch_size,
            wait_time_seconds=args.wait_time,
            max_wait_seconds=args.max_wait,
            wait_credentials=not args.no_wait_credentials,
            dry_run=args.dry_run,
            skip_errors=args.skip_errors,
            provider_ids=tuple(args.providers),
        )
        runner = orchestrator.create_bulk_runner(get_session_factory(), pacer=pacer)

        previous = signal.signal(signal.SIGINT, lambda signum, frame: pacer.abort())
        try:
            summary = runner.run(options)
        finally:
            signal.signal(signal.SIGINT, previous)
    except Exception as e:
        print(f"ERROR: Bulk approval failed: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()

    print(format_summary(summary))
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
