from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from proxyguard.db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class ChallengeConfig(Base):
    __tablename__ = "challenge_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # NULL = global config
    proxy_host_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    challenge_type: Mapped[str] = mapped_column(String(32), nullable=False, default="recaptcha_v2")
    site_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    secret_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    token_validity: Mapped[int] = mapped_column(Integer, nullable=False, default=86400)
    min_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    apply_to: Mapped[str] = mapped_column(String(32), nullable=False, default="both")
    page_title: Mapped[str] = mapped_column(String(255), nullable=False, default="Security Check")
    page_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    theme: Mapped[str] = mapped_column(String(16), nullable=False, default="light")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# One row per host and one global row. A plain UNIQUE on proxy_host_id would
# allow any number of NULL rows, so the index folds NULL onto ''.
Index(
    "uq_challenge_configs_scope",
    func.coalesce(ChallengeConfig.proxy_host_id, ""),
    unique=True,
)


class ChallengeToken(Base):
    __tablename__ = "challenge_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proxy_host_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_ip: Mapped[str] = mapped_column(String(45), nullable=False, index=True)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    challenge_reason: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    use_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")


class ChallengeLog(Base):
    __tablename__ = "challenge_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proxy_host_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    client_ip: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # presented, passed, failed, expired
    result: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger_reason: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    captcha_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    solve_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)


__all__ = ["ChallengeConfig", "ChallengeToken", "ChallengeLog", "utcnow"]
