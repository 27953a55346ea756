from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ChallengeType = Literal["recaptcha_v2", "recaptcha_v3", "hcaptcha", "turnstile"]
ApplyTo = Literal["bot_filter", "geo_restriction", "both"]
Theme = Literal["light", "dark"]
ChallengeResult = Literal["presented", "passed", "failed", "expired"]


class ChallengeConfigUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    enabled: Optional[bool] = None
    challenge_type: Optional[ChallengeType] = None
    site_key: Optional[str] = Field(default=None, max_length=255)
    secret_key: Optional[str] = Field(default=None, max_length=255)
    token_validity: Optional[int] = Field(default=None, ge=60, le=30 * 86400)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    apply_to: Optional[ApplyTo] = None
    page_title: Optional[str] = Field(default=None, max_length=255)
    page_message: Optional[str] = Field(default=None, max_length=2000)
    theme: Optional[Theme] = None


class ChallengeConfigResponse(BaseModel):
    id: Optional[str] = None
    proxy_host_id: Optional[str] = None
    enabled: bool
    challenge_type: ChallengeType
    site_key: str
    has_secret_key: bool
    token_validity: int
    min_score: float
    apply_to: ApplyTo
    page_title: str
    page_message: str
    theme: Theme
    source: Literal["host", "global", "default"]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VerifyCaptchaRequest(BaseModel):
    token: str = Field(default="", max_length=4096)
    proxy_host_id: Optional[str] = Field(default=None, max_length=64)
    challenge_reason: Optional[str] = Field(default=None, max_length=32)


class VerifyCaptchaResponse(BaseModel):
    success: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in: Optional[int] = None
    error: Optional[str] = None
    score: Optional[float] = None


class ChallengeStats(BaseModel):
    total_challenges: int
    passed_challenges: int
    failed_challenges: int
    active_tokens: int
    average_score: float
    average_solve_time: float
    window_hours: int


class RevokeTokenPayload(BaseModel):
    reason: str = Field(default="revoked by administrator", max_length=255)


class RevokeIpPayload(BaseModel):
    client_ip: str = Field(min_length=2, max_length=45)
    reason: str = Field(default="revoked by administrator", max_length=255)


class RevokeResponse(BaseModel):
    revoked: int


class PurgeResponse(BaseModel):
    deleted: int


__all__: List[str] = [
    "ChallengeType",
    "ApplyTo",
    "Theme",
    "ChallengeResult",
    "ChallengeConfigUpdate",
    "ChallengeConfigResponse",
    "VerifyCaptchaRequest",
    "VerifyCaptchaResponse",
    "ChallengeStats",
    "RevokeTokenPayload",
    "RevokeIpPayload",
    "RevokeResponse",
    "PurgeResponse",
]
