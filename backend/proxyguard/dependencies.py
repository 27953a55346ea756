from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from proxyguard.core.settings import get_settings
from proxyguard.db import get_db
from proxyguard.security.captcha_verifier import CaptchaVerifier
from proxyguard.security.gate import ChallengeGate


def get_verifier() -> CaptchaVerifier:
    return CaptchaVerifier(timeout=get_settings().captcha_verify_timeout_seconds)


def get_gate(
    db: Session = Depends(get_db),
    verifier: CaptchaVerifier = Depends(get_verifier),
) -> ChallengeGate:
    return ChallengeGate(db, verifier=verifier, settings=get_settings())
