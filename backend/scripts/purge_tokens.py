from __future__ import annotations

import argparse
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from proxyguard.core.settings import get_settings
from proxyguard.db import SessionLocal, init_db
from proxyguard.security.tokens import TokenStore


def purge_tokens(retention_seconds: Optional[int] = None) -> int:
    settings = get_settings()
    retention = settings.token_retention_seconds if retention_seconds is None else retention_seconds
    if retention < 0:
        print(f"[ERR] retention must be >= 0 seconds, got {retention}")
        return 2

    init_db()
    db = SessionLocal()
    try:
        deleted = TokenStore(db).purge_expired(retention)
    except SQLAlchemyError as exc:
        db.rollback()
        print(f"[ERR] Purge failed: {exc}")
        return 1
    finally:
        db.close()

    print(f"[OK] Purged {deleted} challenge token(s) expired more than {retention}s ago")
    return 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete challenge bypass tokens past their retention window."
    )
    parser.add_argument(
        "--retention-seconds",
        type=int,
        default=None,
        help="Keep expired tokens this long before deleting (default: TOKEN_RETENTION_SECONDS).",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    raise SystemExit(purge_tokens(args.retention_seconds))
