#!/usr/bin/env python3
"""Ask the gate to advance a pipeline run, for use as a CI step.

Usage:
    python scripts/advance_run.py RUN_ID [--stage STAGE]

Exit codes:
    0  stage admitted
    2  blocked (evidence missing, stale or indeterminate; retry later)
    3  rejected (a check failed; needs an override)
    4  run cancelled
    1  any other error (unknown run, conflict, timeout)
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attestgate.db.session import SessionLocal
from attestgate.errors import GateError
from attestgate.gate.controller import request_advance

EXIT_CODES = {"admitted": 0, "blocked": 2, "rejected": 3, "cancelled": 4}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Request a stage advance for a pipeline run.")
    parser.add_argument("run_id")
    parser.add_argument("--stage", help="Stage to advance (default: the run's current stage)")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        result = request_advance(db, args.run_id, stage=args.stage)
        print(
            f"run_id={result.run.run_id} stage={result.stage} status={result.status} "
            f"run_status={result.run.status} replayed={str(result.replayed).lower()}"
        )
        for rule in result.unsatisfied:
            print(f"  unsatisfied {rule['rule_id']}: {rule['reason']} {rule.get('detail', '')}".rstrip())
        return EXIT_CODES.get(result.status, 1)
    except GateError as e:
        print(f"ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
