#!/usr/bin/env python3
"""
Print the role x capability matrix.

Usage:
    python3 scripts/capability_matrix.py                 # every role
    python3 scripts/capability_matrix.py --role webmaster
    python3 scripts/capability_matrix.py --csv > matrix.csv
"""

import argparse
import csv
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from club_kernel.domain.capabilities import DEFAULT_REGISTRY, Capability, GlobalRole, is_write_capability


def main() -> int:
    parser = argparse.ArgumentParser(description="Show which roles hold which capabilities")
    parser.add_argument("--role", action="append", help="Limit to one role (repeatable)")
    parser.add_argument("--csv", action="store_true", help="Write CSV to stdout")
    args = parser.parse_args()

    try:
        roles = [GlobalRole(r) for r in args.role] if args.role else list(DEFAULT_REGISTRY.roles)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    matrix = DEFAULT_REGISTRY.matrix()

    if args.csv:
        writer = csv.writer(sys.stdout)
        writer.writerow(["capability", "kind", *[r.value for r in roles]])
        for cap in Capability:
            kind = "write" if is_write_capability(cap) else "read"
            writer.writerow([cap.value, kind, *["x" if matrix[r][cap] else "" for r in roles]])
        return 0

    width = max(len(c.value) for c in Capability)
    print(" " * (width + 8) + "  ".join(r.value for r in roles))
    for cap in Capability:
        kind = "W" if is_write_capability(cap) else "R"
        cells = "  ".join(("x" if matrix[r][cap] else ".").center(len(r.value)) for r in roles)
        print(f"{cap.value:<{width}}  [{kind}]   {cells}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
