"""Audit trail hash-chain report over the local residency store.

Outputs CSV to stdout:
user_id,entries,chain_ok

At end prints SUMMARY: broken_chains=<n>.
"""
from __future__ import annotations

import sys
from pathlib import Path

from nomadcert.settings import settings
from nomadcert.store import ResidencyStore, verify_audit_chain


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    root = Path(argv[0]) if argv else settings.nomad_data_dir
    users_dir = root / "users"
    if not users_dir.exists():
        print("NO_USERS")
        return 0
    store = ResidencyStore(root)
    print("user_id,entries,chain_ok")
    broken = 0
    for d in sorted(p for p in users_dir.iterdir() if p.is_dir()):
        try:
            trail = store.audit_trail(d.name)
        except ValueError:
            # not a user directory the store would ever write
            print(f"SKIP:{d.name}", file=sys.stderr)
            continue
        ok = verify_audit_chain(trail)
        print(f"{d.name},{len(trail)},{str(ok).lower()}")
        if not ok:
            broken += 1
    print(f"SUMMARY:broken_chains={broken}")
    return 1 if broken else 0


if __name__ == "__main__":
    raise SystemExit(main())
