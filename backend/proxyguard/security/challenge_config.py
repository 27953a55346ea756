"""
Challenge configuration lookup with host -> global -> built-in fallback.

A host may carry its own row; hosts without one use the single global row
(``proxy_host_id IS NULL``); when neither exists a hard-coded default is
used, so a fresh install never fails for lack of configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from proxyguard.db_models import ChallengeConfig
from proxyguard.models import ChallengeConfigResponse, ChallengeConfigUpdate

DEFAULT_CHALLENGE_TYPE = "recaptcha_v2"
DEFAULT_TOKEN_VALIDITY = 86400
DEFAULT_MIN_SCORE = 0.5
DEFAULT_APPLY_TO = "both"
DEFAULT_PAGE_TITLE = "Security Check"
DEFAULT_PAGE_MESSAGE = "Please complete the security check to continue."
DEFAULT_THEME = "light"

UPSERT_ATTEMPTS = 3


@dataclass(frozen=True)
class EffectiveConfig:
    enabled: bool
    challenge_type: str
    site_key: str
    secret_key: str
    token_validity: int
    min_score: float
    apply_to: str
    page_title: str
    page_message: str
    theme: str
    source: str
    id: Optional[str] = None
    proxy_host_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_secret_key(self) -> bool:
        return bool(self.secret_key)

    def to_response(self) -> ChallengeConfigResponse:
        """API view of the config; the secret is reduced to a flag."""
        return ChallengeConfigResponse(
            id=self.id,
            proxy_host_id=self.proxy_host_id,
            enabled=self.enabled,
            challenge_type=self.challenge_type,
            site_key=self.site_key,
            has_secret_key=self.has_secret_key,
            token_validity=self.token_validity,
            min_score=self.min_score,
            apply_to=self.apply_to,
            page_title=self.page_title,
            page_message=self.page_message,
            theme=self.theme,
            source=self.source,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


def default_config(proxy_host_id: Optional[str] = None) -> EffectiveConfig:
    return EffectiveConfig(
        enabled=False,
        challenge_type=DEFAULT_CHALLENGE_TYPE,
        site_key="",
        secret_key="",
        token_validity=DEFAULT_TOKEN_VALIDITY,
        min_score=DEFAULT_MIN_SCORE,
        apply_to=DEFAULT_APPLY_TO,
        page_title=DEFAULT_PAGE_TITLE,
        page_message=DEFAULT_PAGE_MESSAGE,
        theme=DEFAULT_THEME,
        source="default",
        proxy_host_id=proxy_host_id,
    )


def from_row(row: ChallengeConfig) -> EffectiveConfig:
    return EffectiveConfig(
        id=row.id,
        proxy_host_id=row.proxy_host_id,
        enabled=bool(row.enabled),
        challenge_type=row.challenge_type,
        site_key=row.site_key or "",
        secret_key=row.secret_key or "",
        token_validity=int(row.token_validity),
        min_score=float(row.min_score),
        apply_to=row.apply_to,
        page_title=row.page_title,
        page_message=row.page_message,
        theme=row.theme,
        source="global" if row.proxy_host_id is None else "host",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def resolve(
    host_row: Optional[ChallengeConfig],
    global_row: Optional[ChallengeConfig],
    proxy_host_id: Optional[str] = None,
) -> EffectiveConfig:
    """Pick the effective config from the lookup results alone."""
    if host_row is not None:
        return from_row(host_row)
    if global_row is not None:
        return from_row(global_row)
    return default_config(proxy_host_id)


def _scope_filter(proxy_host_id: Optional[str]):
    if proxy_host_id is None:
        return ChallengeConfig.proxy_host_id.is_(None)
    return ChallengeConfig.proxy_host_id == proxy_host_id


def get_row(db: Session, proxy_host_id: Optional[str]) -> Optional[ChallengeConfig]:
    stmt = select(ChallengeConfig).where(_scope_filter(proxy_host_id))
    return db.execute(stmt).scalars().first()


def get_effective_config(db: Session, proxy_host_id: Optional[str]) -> EffectiveConfig:
    host_row = get_row(db, proxy_host_id) if proxy_host_id is not None else None
    global_row = get_row(db, None) if host_row is None else None
    return resolve(host_row, global_row, proxy_host_id)


def _apply(row: ChallengeConfig, update: ChallengeConfigUpdate) -> None:
    fields = update.model_dump(exclude_unset=True, exclude_none=True)
    for key in ("site_key", "secret_key"):
        # A blank key in an update never clears a stored one.
        value = fields.pop(key, None)
        if value is not None and value.strip():
            setattr(row, key, value.strip())
    for key, value in fields.items():
        setattr(row, key, value)


def _new_row(proxy_host_id: Optional[str], update: ChallengeConfigUpdate) -> ChallengeConfig:
    row = ChallengeConfig(
        proxy_host_id=proxy_host_id,
        enabled=True,
        challenge_type=DEFAULT_CHALLENGE_TYPE,
        site_key="",
        secret_key="",
        token_validity=DEFAULT_TOKEN_VALIDITY,
        min_score=DEFAULT_MIN_SCORE,
        apply_to=DEFAULT_APPLY_TO,
        page_title=DEFAULT_PAGE_TITLE,
        page_message=DEFAULT_PAGE_MESSAGE,
        theme=DEFAULT_THEME,
    )
    _apply(row, update)
    return row


def upsert_config(
    db: Session, proxy_host_id: Optional[str], update: ChallengeConfigUpdate
) -> EffectiveConfig:
    """
    Merge ``update`` onto the row for this scope, creating it if needed.

    Two first-time saves for the same scope can both miss the row and both
    insert; the loser hits the unique index, rolls back and retries, this
    time finding the winner's row and updating it.
    """
    last_error: Optional[IntegrityError] = None
    for _ in range(UPSERT_ATTEMPTS):
        row = get_row(db, proxy_host_id)
        if row is None:
            row = _new_row(proxy_host_id, update)
            db.add(row)
        else:
            _apply(row, update)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            last_error = exc
            continue
        db.refresh(row)
        return from_row(row)
    raise last_error


def delete_config(db: Session, proxy_host_id: Optional[str]) -> bool:
    row = get_row(db, proxy_host_id)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True


__all__ = [
    "EffectiveConfig",
    "default_config",
    "from_row",
    "resolve",
    "get_row",
    "get_effective_config",
    "upsert_config",
    "delete_config",
]
