"""
Database-backed store for challenge bypass tokens.

Only a SHA-256 digest of each token is persisted; the raw value is handed to
the caller once, at issuance, and cannot be recovered afterwards. Validity is
computed (not revoked and not yet expired) rather than tracked by a state
column, so natural expiry never mutates a row.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from proxyguard.db_models import ChallengeToken, utcnow

TOKEN_BYTES = 32
DEFAULT_RETENTION_SECONDS = 86400


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class IssuedToken:
    token: str
    record: ChallengeToken


class TokenStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _now(self) -> datetime:
        return utcnow()

    def _scope(self, stmt, proxy_host_id: Optional[str]):
        if proxy_host_id is None:
            # No host on the request: the token is accepted whatever host it was issued for.
            return stmt
        return stmt.where(
            or_(
                ChallengeToken.proxy_host_id == proxy_host_id,
                ChallengeToken.proxy_host_id.is_(None),
            )
        )

    def issue(
        self,
        proxy_host_id: Optional[str],
        client_ip: str,
        user_agent: str,
        reason: str,
        validity_seconds: int,
    ) -> IssuedToken:
        """Create a token row and return the raw value alongside it."""
        now = self._now()
        raw = generate_token()
        record = ChallengeToken(
            proxy_host_id=proxy_host_id,
            token_hash=hash_token(raw),
            client_ip=client_ip,
            user_agent=user_agent or "",
            challenge_reason=reason or "",
            issued_at=now,
            expires_at=now + timedelta(seconds=validity_seconds),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return IssuedToken(token=raw, record=record)

    def validate(
        self, token: str, client_ip: str, proxy_host_id: Optional[str] = None
    ) -> Optional[ChallengeToken]:
        """
        Return the matching live token, or ``None``.

        ``None`` covers unknown, expired, revoked, wrong-IP and wrong-host
        tokens alike. A hit bumps ``use_count`` and ``last_used_at``.
        """
        if not token or not client_ip:
            return None
        now = self._now()
        stmt = select(ChallengeToken).where(
            ChallengeToken.token_hash == hash_token(token),
            ChallengeToken.client_ip == client_ip,
            ChallengeToken.revoked.is_(False),
            ChallengeToken.expires_at > now,
        )
        record = self.db.execute(self._scope(stmt, proxy_host_id)).scalars().first()
        if record is None:
            return None

        self.db.execute(
            update(ChallengeToken)
            .where(ChallengeToken.id == record.id)
            .values(use_count=ChallengeToken.use_count + 1, last_used_at=now)
        )
        self.db.commit()
        self.db.refresh(record)
        return record

    def get(self, token_id: str) -> Optional[ChallengeToken]:
        return self.db.get(ChallengeToken, token_id)

    def revoke(self, token_id: str, reason: str) -> bool:
        """Revoke one token. Already-revoked or unknown ids are a no-op."""
        result = self.db.execute(
            update(ChallengeToken)
            .where(ChallengeToken.id == token_id, ChallengeToken.revoked.is_(False))
            .values(revoked=True, revoked_at=self._now(), revoked_reason=reason or "")
        )
        self.db.commit()
        return bool(result.rowcount)

    def revoke_all_for_ip(self, client_ip: str, reason: str) -> int:
        result = self.db.execute(
            update(ChallengeToken)
            .where(ChallengeToken.client_ip == client_ip, ChallengeToken.revoked.is_(False))
            .values(revoked=True, revoked_at=self._now(), revoked_reason=reason or "")
        )
        self.db.commit()
        return int(result.rowcount or 0)

    def count_active(self, proxy_host_id: Optional[str] = None) -> int:
        """Live tokens for one host, or across every host when ``None``."""
        stmt = select(func.count(ChallengeToken.id)).where(
            ChallengeToken.revoked.is_(False),
            ChallengeToken.expires_at > self._now(),
        )
        if proxy_host_id is not None:
            stmt = stmt.where(ChallengeToken.proxy_host_id == proxy_host_id)
        return int(self.db.execute(stmt).scalar_one())

    def purge_expired(self, retention_seconds: int = DEFAULT_RETENTION_SECONDS) -> int:
        """Delete tokens that expired more than ``retention_seconds`` ago."""
        cutoff = self._now() - timedelta(seconds=retention_seconds)
        result = self.db.execute(
            delete(ChallengeToken).where(ChallengeToken.expires_at < cutoff)
        )
        self.db.commit()
        return int(result.rowcount or 0)


__all__ = ["IssuedToken", "TokenStore", "generate_token", "hash_token"]
