"""
Server-side verification of solved CAPTCHA tokens.

Every supported provider takes the same form POST (``secret``, ``response``,
``remoteip``) against its own siteverify endpoint and answers with JSON that
carries at least ``success``. Only reCAPTCHA v3 returns a ``score``; for it
the outcome also requires ``score >= min_score``. Anything that goes wrong
on the way (timeout, transport error, non-2xx, bad JSON) is a failed
verification, never a pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proxyguard.security.logger import challenge_logger as logger

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
HCAPTCHA_VERIFY_URL = "https://api.hcaptcha.com/siteverify"
TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

DEFAULT_TIMEOUT_SECONDS = 10.0

# Provider code for an already-used or stale response token.
TIMEOUT_OR_DUPLICATE = "timeout-or-duplicate"


class _ProviderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    challenge_ts: Optional[str] = None
    hostname: Optional[str] = None
    error_codes: List[str] = Field(default_factory=list, alias="error-codes")

    def score_value(self) -> Optional[float]:
        return None


class RecaptchaV2Response(_ProviderResponse):
    kind: Literal["recaptcha_v2"] = "recaptcha_v2"


class RecaptchaV3Response(_ProviderResponse):
    kind: Literal["recaptcha_v3"] = "recaptcha_v3"
    score: Optional[float] = None
    action: Optional[str] = None

    def score_value(self) -> Optional[float]:
        # A v3 answer without a score cannot clear any threshold.
        return self.score if self.score is not None else 0.0


class HCaptchaResponse(_ProviderResponse):
    kind: Literal["hcaptcha"] = "hcaptcha"
    credit: Optional[bool] = None


class TurnstileResponse(_ProviderResponse):
    kind: Literal["turnstile"] = "turnstile"
    action: Optional[str] = None
    cdata: Optional[str] = None


PROVIDERS: Dict[str, Tuple[str, Type[_ProviderResponse]]] = {
    "recaptcha_v2": (RECAPTCHA_VERIFY_URL, RecaptchaV2Response),
    "recaptcha_v3": (RECAPTCHA_VERIFY_URL, RecaptchaV3Response),
    "hcaptcha": (HCAPTCHA_VERIFY_URL, HCaptchaResponse),
    "turnstile": (TURNSTILE_VERIFY_URL, TurnstileResponse),
}

SCORED_PROVIDERS = frozenset({"recaptcha_v3"})


@dataclass
class VerificationOutcome:
    success: bool
    score: Optional[float] = None
    error_codes: List[str] = field(default_factory=list)

    @property
    def expired(self) -> bool:
        return TIMEOUT_OR_DUPLICATE in self.error_codes


def _failure(code: str, score: Optional[float] = None) -> VerificationOutcome:
    return VerificationOutcome(success=False, score=score, error_codes=[code])


class CaptchaVerifier:
    """Dispatches a solved token to the configured provider's siteverify API."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self.timeout = timeout

    def _post(self, url: str, data: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, data=data, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, data=data)

    def verify(
        self,
        challenge_type: str,
        secret_key: str,
        token: str,
        remote_ip: Optional[str] = None,
        min_score: float = 0.5,
    ) -> VerificationOutcome:
        provider = PROVIDERS.get(challenge_type)
        if provider is None:
            logger.warning(f"CAPTCHA verify: unsupported challenge type {challenge_type!r}")
            return _failure("unsupported-challenge-type")
        if not token:
            return _failure("missing-input-response")
        if not secret_key:
            return _failure("missing-input-secret")

        url, response_model = provider
        data = {"secret": secret_key, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            response = self._post(url, data)
        except httpx.TimeoutException:
            logger.error(f"CAPTCHA verify: {challenge_type} timed out after {self.timeout}s")
            return _failure("timeout")
        except httpx.HTTPError as exc:
            logger.error(f"CAPTCHA verify: {challenge_type} transport error: {exc}")
            return _failure("network-error")

        if response.status_code != 200:
            logger.error(f"CAPTCHA verify: {challenge_type} returned HTTP {response.status_code}")
            return _failure("api-error")

        try:
            result = response_model.model_validate(response.json())
        except ValidationError:
            logger.error(f"CAPTCHA verify: {challenge_type} response did not match schema")
            return _failure("invalid-response")
        except ValueError:
            logger.error(f"CAPTCHA verify: {challenge_type} response was not JSON")
            return _failure("invalid-json")

        score = result.score_value()
        if not result.success:
            codes = result.error_codes or ["verification-failed"]
            logger.info(f"CAPTCHA verify: {challenge_type} rejected token error_codes={codes}")
            return VerificationOutcome(success=False, score=score, error_codes=codes)

        if challenge_type in SCORED_PROVIDERS and (score is None or score < min_score):
            logger.info(
                f"CAPTCHA verify: {challenge_type} score {score} below minimum {min_score}"
            )
            return _failure("score-too-low", score=score)

        return VerificationOutcome(success=True, score=score, error_codes=[])


__all__ = [
    "CaptchaVerifier",
    "VerificationOutcome",
    "RecaptchaV2Response",
    "RecaptchaV3Response",
    "HCaptchaResponse",
    "TurnstileResponse",
    "PROVIDERS",
    "RECAPTCHA_VERIFY_URL",
    "HCAPTCHA_VERIFY_URL",
    "TURNSTILE_VERIFY_URL",
]
