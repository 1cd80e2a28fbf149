#!/usr/bin/env python3
"""
Operator tooling for generated credentials.

Usage:
    acredita-credentials status
    acredita-credentials regenerate --request UUID [--force]
    acredita-credentials regenerate --retry-failed [--force]
    acredita-credentials regenerate --event ID
    acredita-credentials expire-event --event ID
    acredita-credentials cleanup [--days N]

``regenerate`` resets a credential to pending and schedules generation again.
A failed credential that already hit the retry cap is refused unless --force
is given.  ``regenerate --event`` re-renders every active credential of
the event's approved requests with the event's current default template; QR
codes are kept and the retry cap does not apply.  ``cleanup`` deletes
orphaned credentials and failed ones whose last attempt is older than the
retention window.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence
from uuid import UUID

from scripts._runtime import bootstrap, resolve_actor


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acredita-credentials",
        description="Inspect, regenerate, expire and clean up credentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config override.")
    parser.add_argument("--actor-id", default=None, help="Actor UUID recorded on changes.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Counts by status and repeatedly failing credentials.")

    regen = sub.add_parser("regenerate", help="Schedule generation again.")
    target = regen.add_mutually_exclusive_group(required=True)
    target.add_argument("--request", type=UUID, help="Request id or uuid.")
    target.add_argument(
        "--retry-failed", action="store_true", help="Every credential in failed status.",
    )
    target.add_argument(
        "--event", type=UUID, help="Every credential of an event, after a template change.",
    )
    regen.add_argument("--force", action="store_true", help="Ignore the retry cap.")

    expire = sub.add_parser("expire-event", help="Deactivate all credentials of an event.")
    expire.add_argument("--event", type=UUID, required=True, help="Event id.")

    cleanup = sub.add_parser("cleanup", help="Delete orphaned and stale failed credentials.")
    cleanup.add_argument(
        "--days", type=int, default=None,
        help="Retention for failed credentials (default: config, 30).",
    )
    return parser.parse_args(argv)


def _print_status(orchestrator) -> None:
    report = orchestrator.credentials.get_status_report()
    print("Credential status")
    for status, count in report.counts.items():
        print(f"  {status.value:<12} {count:>8}")
    print(f"  {'total':<12} {report.total:>8}")
    if report.repeatedly_failed:
        print("")
        print(f"Failing repeatedly ({len(report.repeatedly_failed)}):")
        for item in report.repeatedly_failed:
            print(
                f"  {item.credential_id} request={item.request_uuid} "
                f"retries={item.retry_count} error={item.error_message or '-'}"
            )


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
    from acredita_kernel.exceptions import AcreditaError

    session = get_session()
    try:
        orchestrator = AccreditationOrchestrator.from_session(
            session, config=config, actor_id=actor_id,
        )
        credentials = orchestrator.credentials

        if args.command == "status":
            _print_status(orchestrator)
        elif args.command == "regenerate" and args.event is not None:
            outcome = credentials.regenerate_event_credentials(args.event, actor_id)
            session.commit()
            print(
                f"Scheduled {outcome['scheduled']} credential(s) of event {args.event}; "
                f"skipped {outcome['skipped']} being generated."
            )
        elif args.command == "regenerate" and args.retry_failed:
            outcome = credentials.retry_failed(actor_id, force=args.force)
            session.commit()
            print(
                f"Scheduled {outcome['scheduled']} credential(s); "
                f"skipped {outcome['skipped']} at the retry limit."
            )
        elif args.command == "regenerate":
            credential = credentials.regenerate_for_request(
                args.request, actor_id, force=args.force,
            )
            session.commit()
            print(
                f"Credential {credential.id} reset to {credential.status.value} "
                f"(retry_count={credential.retry_count})."
            )
        elif args.command == "expire-event":
            count = credentials.expire_event_credentials(args.event, actor_id)
            session.commit()
            print(f"Expired {count} credential(s) for event {args.event}.")
        elif args.command == "cleanup":
            result = credentials.cleanup(actor_id, args.days)
            session.commit()
            print(
                f"Deleted {result.orphaned_deleted} orphaned and "
                f"{result.failed_deleted} failed credential(s)."
            )
    except AcreditaError as e:
        session.rollback()
        print(f"ERROR: [{e.code}] {e}", file=sys.stderr)
        return 1
    except Exception as e:
        session.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
