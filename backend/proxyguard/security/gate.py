"""
Challenge gate: the per-request decisions behind the challenge endpoints.

    unchallenged --(validate, no valid token)--> presented (page shown)
    presented --(verify ok)--> passed --> bypassed until the token expires
    presented --(verify fails)--> failed (client re-solves)

Nothing is kept between requests; every call reloads what it needs from the
database session it was built with.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from proxyguard.core.settings import Settings, get_settings
from proxyguard.db_models import ChallengeLog, utcnow
from proxyguard.models import ChallengeStats, VerifyCaptchaRequest
from proxyguard.security.bypass import bypass_reason
from proxyguard.security.captcha_verifier import CaptchaVerifier
from proxyguard.security.challenge_config import EffectiveConfig, get_effective_config
from proxyguard.security.challenge_page import content_security_policy, render_challenge_page
from proxyguard.security.logger import challenge_logger as logger
from proxyguard.security.tokens import TokenStore

# Longest gap between showing the page and a solve that still counts as one attempt.
SOLVE_WINDOW = timedelta(hours=1)

GENERIC_VERIFY_ERROR = "CAPTCHA verification failed"


class ChallengeError(Exception):
    """Base class for challenge errors the HTTP layer maps to responses."""


class ChallengeDisabledError(ChallengeError):
    def __init__(self) -> None:
        super().__init__("Challenge is not enabled")


class ChallengeNotConfiguredError(ChallengeError):
    def __init__(self) -> None:
        super().__init__("CAPTCHA is not configured")


class ChallengeUnavailableError(ChallengeError):
    def __init__(self) -> None:
        super().__init__("Challenge configuration is unavailable")


@dataclass
class AccessDecision:
    allowed: bool
    reason: str


@dataclass
class ChallengePage:
    html: str
    content_security_policy: str


@dataclass
class VerifyResult:
    success: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in: Optional[int] = None
    error: Optional[str] = None
    score: Optional[float] = None


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


class ChallengeGate:
    def __init__(
        self,
        db: Session,
        verifier: Optional[CaptchaVerifier] = None,
        settings: Optional[Settings] = None,
        tokens: Optional[TokenStore] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.verifier = verifier or CaptchaVerifier(timeout=self.settings.captcha_verify_timeout_seconds)
        self.tokens = tokens or TokenStore(db)

    # ---------------- Config ----------------
    def _load_config(self, proxy_host_id: Optional[str]) -> EffectiveConfig:
        try:
            return get_effective_config(self.db, proxy_host_id)
        except SQLAlchemyError as exc:
            # An unreadable config must not switch protection off.
            self.db.rollback()
            logger.error(f"Challenge config load failed for host={proxy_host_id}: {exc}")
            raise ChallengeUnavailableError() from exc

    # ---------------- Event log ----------------
    def _log(
        self,
        proxy_host_id: Optional[str],
        client_ip: str,
        user_agent: str,
        result: str,
        reason: str,
        score: Optional[float] = None,
        solve_time: Optional[int] = None,
    ) -> None:
        self.db.add(
            ChallengeLog(
                proxy_host_id=proxy_host_id,
                client_ip=client_ip,
                user_agent=user_agent or "",
                result=result,
                trigger_reason=reason or "",
                captcha_score=score,
                solve_time=solve_time,
            )
        )
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            # Statistics only; the challenge outcome stands either way.
            self.db.rollback()
            logger.warning(f"Challenge event '{result}' not recorded: {exc}")

    def _solve_time(self, proxy_host_id: Optional[str], client_ip: str) -> Optional[int]:
        now = utcnow()
        host_filter = (
            ChallengeLog.proxy_host_id.is_(None)
            if proxy_host_id is None
            else ChallengeLog.proxy_host_id == proxy_host_id
        )
        stmt = (
            select(ChallengeLog.created_at)
            .where(
                ChallengeLog.result == "presented",
                ChallengeLog.client_ip == client_ip,
                ChallengeLog.created_at >= now - SOLVE_WINDOW,
                host_filter,
            )
            .order_by(ChallengeLog.created_at.desc())
            .limit(1)
        )
        presented_at = self.db.execute(stmt).scalar_one_or_none()
        if presented_at is None:
            return None
        return max(0, int((now - presented_at).total_seconds()))

    # ---------------- auth_request ----------------
    def check_access(
        self,
        token: Optional[str],
        client_ip: str,
        proxy_host_id: Optional[str],
        user_agent: Optional[str] = None,
        geo_blocked: Optional[str] = None,
    ) -> AccessDecision:
        skip = bypass_reason(user_agent, geo_blocked, self.settings.trust_geo_header)
        if skip:
            return AccessDecision(allowed=True, reason=skip)
        if not token:
            return AccessDecision(allowed=False, reason="missing_token")
        try:
            record = self.tokens.validate(token, client_ip, proxy_host_id)
        except SQLAlchemyError as exc:
            # Fail closed: a store outage must not wave traffic through.
            self.db.rollback()
            logger.error(f"Token validation failed for ip={client_ip} host={proxy_host_id}: {exc}")
            return AccessDecision(allowed=False, reason="store_error")
        if record is None:
            return AccessDecision(allowed=False, reason="invalid_token")
        return AccessDecision(allowed=True, reason="token")

    # ---------------- Solve ----------------
    def verify_captcha(
        self, payload: VerifyCaptchaRequest, client_ip: str, user_agent: str
    ) -> VerifyResult:
        proxy_host_id = payload.proxy_host_id or None
        reason = payload.challenge_reason or ""
        config = self._load_config(proxy_host_id)

        if not config.enabled:
            raise ChallengeDisabledError()
        if not config.site_key or not config.secret_key:
            raise ChallengeNotConfiguredError()

        outcome = self.verifier.verify(
            config.challenge_type,
            config.secret_key,
            payload.token,
            remote_ip=client_ip,
            min_score=config.min_score,
        )

        if not outcome.success:
            result = "expired" if outcome.expired else "failed"
            self._log(proxy_host_id, client_ip, user_agent, result, reason, score=outcome.score)
            logger.info(
                f"CAPTCHA {result} ip={client_ip} host={proxy_host_id} "
                f"type={config.challenge_type} error_codes={outcome.error_codes}"
            )
            return VerifyResult(success=False, error=GENERIC_VERIFY_ERROR, score=outcome.score)

        solve_time = self._solve_time(proxy_host_id, client_ip)
        try:
            issued = self.tokens.issue(
                proxy_host_id, client_ip, user_agent, reason, config.token_validity
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Token issue failed for ip={client_ip} host={proxy_host_id}: {exc}")
            raise ChallengeUnavailableError() from exc
        self._log(
            proxy_host_id,
            client_ip,
            user_agent,
            "passed",
            reason,
            score=outcome.score,
            solve_time=solve_time,
        )
        logger.info(
            f"CAPTCHA passed ip={client_ip} host={proxy_host_id} "
            f"type={config.challenge_type} token_id={issued.record.id}"
        )
        return VerifyResult(
            success=True,
            token=issued.token,
            expires_at=_as_utc(issued.record.expires_at),
            expires_in=config.token_validity,
            score=outcome.score,
        )

    # ---------------- Page ----------------
    def render_page(
        self,
        proxy_host_id: Optional[str],
        reason: str,
        nonce: str,
        client_ip: str,
        user_agent: str,
        return_url: Optional[str] = None,
    ) -> ChallengePage:
        config = self._load_config(proxy_host_id)
        if not config.enabled:
            raise ChallengeDisabledError()
        if not config.site_key:
            raise ChallengeNotConfiguredError()

        page = render_challenge_page(
            config,
            proxy_host_id,
            reason,
            nonce,
            return_url=return_url,
            default_language=self.settings.challenge_default_language,
            api_prefix=self.settings.api_prefix,
            force_secure_cookie=self.settings.cookie_secure,
        )
        self._log(proxy_host_id, client_ip, user_agent, "presented", reason)
        return ChallengePage(
            html=page,
            content_security_policy=content_security_policy(config.challenge_type, nonce),
        )

    # ---------------- Stats & maintenance ----------------
    def stats(self, proxy_host_id: Optional[str], hours: Optional[int] = None) -> ChallengeStats:
        window = hours or self.settings.challenge_stats_window_hours
        since = utcnow() - timedelta(hours=window)
        stmt = select(
            func.count(case((ChallengeLog.result.in_(("presented", "passed", "failed")), 1))),
            func.count(case((ChallengeLog.result == "passed", 1))),
            func.count(case((ChallengeLog.result == "failed", 1))),
            func.coalesce(func.avg(ChallengeLog.captcha_score), 0.0),
            func.coalesce(func.avg(ChallengeLog.solve_time), 0.0),
        ).where(ChallengeLog.created_at >= since)
        if proxy_host_id is not None:
            stmt = stmt.where(ChallengeLog.proxy_host_id == proxy_host_id)
        total, passed, failed, avg_score, avg_solve = self.db.execute(stmt).one()
        return ChallengeStats(
            total_challenges=int(total or 0),
            passed_challenges=int(passed or 0),
            failed_challenges=int(failed or 0),
            active_tokens=self.tokens.count_active(proxy_host_id),
            average_score=round(float(avg_score or 0.0), 4),
            average_solve_time=round(float(avg_solve or 0.0), 2),
            window_hours=window,
        )

    def revoke_token(self, token_id: str, reason: str) -> bool:
        revoked = self.tokens.revoke(token_id, reason)
        if revoked:
            logger.info(f"Challenge token {token_id} revoked: {reason}")
        return revoked

    def revoke_ip(self, client_ip: str, reason: str) -> int:
        count = self.tokens.revoke_all_for_ip(client_ip, reason)
        logger.info(f"Revoked {count} challenge token(s) for ip={client_ip}: {reason}")
        return count

    def purge_expired(self) -> int:
        deleted = self.tokens.purge_expired(self.settings.token_retention_seconds)
        if deleted:
            logger.info(f"Purged {deleted} expired challenge token(s)")
        return deleted


__all__ = [
    "AccessDecision",
    "ChallengePage",
    "ChallengeDisabledError",
    "ChallengeError",
    "ChallengeGate",
    "ChallengeNotConfiguredError",
    "ChallengeUnavailableError",
    "VerifyResult",
]
