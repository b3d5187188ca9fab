#!/usr/bin/env python3
"""
Walk the audit hash chain and report whether it is intact.

Usage:
    python3 scripts/verify_audit_chain.py                  # active settings
    python3 scripts/verify_audit_chain.py --config my.yaml
    python3 scripts/verify_audit_chain.py --url sqlite:///club.db

Exit status is 0 for an intact chain, 1 for a broken one, 2 when the
database or settings could not be read.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from club_config import get_active_settings
from club_kernel.db.engine import init_engine_from_url, session_scope
from club_kernel.exceptions import AuditChainBrokenError, ClubKernelError
from club_kernel.selectors.audit_selector import AuditSelector
from club_kernel.services.audit_trail import AuditTrailService


def verify(url: str) -> int:
    init_engine_from_url(url, pool_size=1, max_overflow=0)
    with session_scope() as session:
        count = AuditSelector(session).count()
        print(f"Checking {count} audit entr{'y' if count == 1 else 'ies'}...")
        try:
            AuditTrailService(session).validate_chain()
        except AuditChainBrokenError as exc:
            print(f"BROKEN at entry {exc.audit_entry_id}", file=sys.stderr)
            print(f"  expected: {exc.expected_hash}", file=sys.stderr)
            print(f"  actual:   {exc.actual_hash}", file=sys.stderr)
            return 1
    print("Chain intact.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Verify the audit trail hash chain")
    parser.add_argument("--config", type=Path, help="Settings YAML (defaults to the active settings)")
    parser.add_argument("--url", help="Database URL; overrides the settings file")
    args = parser.parse_args()

    try:
        url = args.url or get_active_settings(args.config).database.url
        return verify(url)
    except ClubKernelError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
