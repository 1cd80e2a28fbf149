#!/usr/bin/env python3
"""
Run the background job worker (credential generation, print batch rendering).

Usage:
    acredita-worker [--once] [--tick-interval N] [--config PATH]

With --once the queue is drained and the process exits (cron style);
otherwise the worker polls until interrupted with Ctrl-C.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Sequence

from scripts._runtime import bootstrap, resolve_actor


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acredita-worker",
        description="Process queued background jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--once", action="store_true", help="Drain the queue and exit.")
    parser.add_argument(
        "--tick-interval", type=float, default=None,
        help="Seconds between polls (default: config, 5).",
    )
    parser.add_argument("--actor-id", default=None, help="Actor UUID for jobs.")
    parser.add_argument("--config", default=None, help="Path to a YAML config override.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.tick_interval is not None and args.tick_interval <= 0:
        print("ERROR: --tick-interval must be greater than zero", file=sys.stderr)
        return 1

    try:
        actor_id = resolve_actor(args.actor_id)
        config = bootstrap(args.config)
    except Exception as e:
        print(f"ERROR: Startup failed: {e}", file=sys.stderr)
        return 1

    from acredita_batch.orchestrator import AccreditationOrchestrator
    from acredita_kernel.db.engine import get_session, get_session_factory

    session = get_session()
    try:
        orchestrator = AccreditationOrchestrator.from_session(
            session, config=config, actor_id=actor_id,
        )
        worker = orchestrator.create_worker(
            get_session_factory(), tick_interval_seconds=args.tick_interval,
        )
        if args.once:
            result = worker.run_until_idle()
            print(
                f"Processed {result.processed} job(s): {result.succeeded} succeeded, "
                f"{result.failed} failed, {result.requeued} re-queued."
            )
            return 0

        stopped = threading.Event()
        signal.signal(signal.SIGINT, lambda signum, frame: stopped.set())
        signal.signal(signal.SIGTERM, lambda signum, frame: stopped.set())
        worker.start()
        print("Worker running; press Ctrl-C to stop.")
        stopped.wait()
        worker.stop()
        return 0
    except Exception as e:
        print(f"ERROR: Worker failed: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
