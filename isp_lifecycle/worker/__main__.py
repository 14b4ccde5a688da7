"""
Renewal worker entry point.

Usage:
    python -m isp_lifecycle.worker [OPTIONS]

Options:
    --once              Run one sweep now, print the JSON report and exit
    --max-workers N     Parallel client units (default: from config)

Exit codes:
    0   every due client renewed (or nothing was due)
    1   the run finished but at least one client or reviewer failed
    2   the run itself failed
"""
from __future__ import annotations

import argparse
import json
import sys

from ..config import get_settings
from ..logging_setup import configure_logging
from .scheduler import RenewalScheduler, build_sweep

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_RUN_FAILED = 2


def main(argv=None) -> int:
    """Main entry point for the worker."""
    parser = argparse.ArgumentParser(
        description="ISP renewal worker - runs the daily renewal sweep",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the daily scheduler
    python -m isp_lifecycle.worker

    # Run one sweep now (cron style)
    python -m isp_lifecycle.worker --once
        """,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep now and exit",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Parallel client units (default: from config)",
    )

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        sweep = build_sweep(settings)
        if args.max_workers:
            sweep.max_workers = args.max_workers
        scheduler = RenewalScheduler(sweep, settings)

        if not args.once:
            scheduler.start()
            return EXIT_OK

        report = scheduler.run_once()
    except KeyboardInterrupt:
        print("\nWorker stopped by user", file=sys.stderr)
        return EXIT_OK
    except Exception as e:
        print(json.dumps({"status": "error", "message": str(e)}))
        print(f"Worker error: {e}", file=sys.stderr)
        return EXIT_RUN_FAILED

    print(json.dumps(report.to_dict(), indent=2))
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
