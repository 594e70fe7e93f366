#!/usr/bin/env python3
"""Load the policy directory, validate it and publish it as the active policy.

Usage:
    python scripts/publish_policy.py [--policy-dir DIR] [--actor NAME] [--dry-run]

Publishing a document identical to the active one is a no-op.
Exits 0 on success, 1 on validation or database failure.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attestgate.db.session import SessionLocal
from attestgate.policy.loader import compute_policy_checksum, load_policy_document
from attestgate.policy.registry import publish_policy
from attestgate.policy.validator import PolicyValidationError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Publish the policy directory as the active policy.")
    parser.add_argument("--policy-dir", help="Policy directory (default: POLICY_DIR)")
    parser.add_argument("--actor", help="Recorded as activated_by")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print the checksum without publishing.",
    )
    args = parser.parse_args(argv)

    try:
        document = load_policy_document(args.policy_dir)
    except (FileNotFoundError, PolicyValidationError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.dry_run:
        print(f"version={document['version']} checksum={compute_policy_checksum(document)} valid=true")
        return 0

    db = SessionLocal()
    try:
        row = publish_policy(db, document, activated_by=args.actor)
        print(f"version={row.version} checksum={row.checksum} id={row.id}")
        return 0
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
