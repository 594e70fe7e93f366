#!/usr/bin/env python3
"""Re-evaluate every Blocked run (poll path; run from cron).

Usage:
    python scripts/retry_blocked.py

Exits 0 on success, 1 on failure.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attestgate.db.session import SessionLocal
from attestgate.gate.controller import retry_blocked_runs


def main() -> int:
    db = SessionLocal()
    try:
        result = retry_blocked_runs(db)
        print(
            f"status={result['status']} "
            f"runs_checked={result['runs_checked']} "
            f"advanced={result['advanced']} "
            f"still_blocked={result['still_blocked']} "
            f"rejected={result['rejected']} "
            f"errors={result['errors']}"
        )
        return 0 if result["status"] == "completed" else 1
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
