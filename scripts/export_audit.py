#!/usr/bin/env python3
"""Export recorded decisions as NDJSON, optionally verifying each run's hash chain.

Usage:
    python scripts/export_audit.py [--after-id N] [--limit N] [--output FILE] [--verify]

Writes to stdout unless --output is given. With --verify, exits 1 if any
exported run's chain is broken.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attestgate.audit.log import decision_to_dict, export_decisions, verify_chain
from attestgate.config import get_settings
from attestgate.db.session import SessionLocal


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Export gate decisions as NDJSON.")
    parser.add_argument("--after-id", type=int, default=0, help="Resume after this decision id")
    parser.add_argument("--limit", type=int, default=None, help="Maximum entries to export")
    parser.add_argument("--output", help="Write to this file instead of stdout")
    parser.add_argument("--verify", action="store_true", help="Verify hash chains of exported runs")
    args = parser.parse_args(argv)

    page_size = max(get_settings().audit_export_page_size, 1)
    db = SessionLocal()
    out = open(args.output, "w", encoding="utf-8") if args.output else sys.stdout
    try:
        cursor, exported, run_ids = args.after_id, 0, set()
        while args.limit is None or exported < args.limit:
            size = page_size if args.limit is None else min(page_size, args.limit - exported)
            page = export_decisions(db, after_id=cursor, limit=size)
            if not page:
                break
            for decision in page:
                out.write(json.dumps(decision_to_dict(decision), sort_keys=True) + "\n")
                run_ids.add(decision.run_id)
            exported += len(page)
            cursor = page[-1].id
        print(f"exported={exported} last_id={cursor}", file=sys.stderr)

        if args.verify:
            broken = [r for r in (verify_chain(db, run_id) for run_id in sorted(run_ids)) if not r.valid]
            for r in broken:
                print(
                    f"BROKEN run_id={r.run_id} sequence={r.broken_at_sequence} reason={r.reason}",
                    file=sys.stderr,
                )
            return 1 if broken else 0
        return 0
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        if out is not sys.stdout:
            out.close()
        db.close()


if __name__ == "__main__":
    sys.exit(main())
