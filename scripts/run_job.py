import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

import config
from services.errors import PreconditionError
from services.jobs import run_inventory_sync, run_late_order_report, run_po_sync

LOGGER = logging.getLogger("run_job")


def _summarize(result: Any) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    if hasattr(result, "summary"):
        return result.summary.model_dump()
    if hasattr(result, "as_dict"):
        return result.as_dict()
    return result


JOBS: Dict[str, Callable[..., Any]] = {
    "po-sync": run_po_sync,
    "late-orders": run_late_order_report,
    "inventory-sync": run_inventory_sync,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one warehouse batch job to completion.")
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    parser.add_argument(
        "--owner",
        type=str,
        default="cli",
        help="Name recorded as the lock owner (default: cli)",
    )
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else config.LOG_LEVEL,
        format=config.LOG_FORMAT,
    )
    try:
        result = JOBS[args.job](owner=args.owner)
    except PreconditionError as exc:
        LOGGER.warning("%s not started (%s): %s", args.job, exc.reason, exc)
        return 2
    except Exception as exc:
        LOGGER.error("%s failed: %s", args.job, exc)
        return 1

    summary = _summarize(result)
    if summary is None:
        print(f"{args.job}: throttled by upstream, nothing stored")
    else:
        print(f"{args.job}: {json.dumps(summary, default=str)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
