from __future__ import annotations

import argparse
from datetime import timedelta
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from editguard.core.clock import utcnow
from editguard.core.config import settings
from editguard.db.session import SessionLocal
from editguard.services.presence_store import PresenceStore


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete edit_session rows whose heartbeat is older than the staleness window."
    )
    parser.add_argument(
        "--older-than-seconds",
        type=int,
        default=settings.PRESENCE_STALE_SECONDS,
        help="Heartbeat age after which a session is purged (default: PRESENCE_STALE_SECONDS).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report the cutoff that would be used.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    cutoff = utcnow() - timedelta(seconds=max(0, args.older_than_seconds))
    if args.dry_run:
        print(f"Would purge edit sessions with last_heartbeat <= {cutoff.isoformat()}")
        return 0
    removed = PresenceStore(SessionLocal).purge_stale(cutoff)
    print(f"Purged {removed} stale edit session(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
