from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from proxyguard.db import get_db
from proxyguard.dependencies import get_gate
from proxyguard.models import (
    ChallengeConfigResponse,
    ChallengeConfigUpdate,
    ChallengeStats,
    PurgeResponse,
    RevokeIpPayload,
    RevokeResponse,
    RevokeTokenPayload,
)
from proxyguard.security import User, get_current_user, require_role
from proxyguard.security.challenge_config import (
    delete_config,
    get_effective_config,
    upsert_config,
)
from proxyguard.security.gate import ChallengeGate
from proxyguard.security.logger import challenge_logger as logger

router = APIRouter(tags=["challenge-admin"])


def _host_id(host_id: str) -> str:
    host_id = host_id.strip()
    if not host_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="host_id is required")
    return host_id


# ---------------- Config ----------------
@router.get("/challenge/config", response_model=ChallengeConfigResponse)
def get_global_config(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return get_effective_config(db, None).to_response()


@router.put("/challenge/config", response_model=ChallengeConfigResponse)
def put_global_config(
    payload: ChallengeConfigUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    config = upsert_config(db, None, payload)
    logger.info(f"Global challenge config updated by {user.subject}")
    return config.to_response()


@router.delete("/challenge/config", status_code=status.HTTP_204_NO_CONTENT)
def delete_global_config(
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    if not delete_config(db, None):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="config_not_found")
    logger.info(f"Global challenge config deleted by {user.subject}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/hosts/{host_id}/challenge/config", response_model=ChallengeConfigResponse)
def get_host_config(
    host_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return get_effective_config(db, _host_id(host_id)).to_response()


@router.put("/hosts/{host_id}/challenge/config", response_model=ChallengeConfigResponse)
def put_host_config(
    host_id: str,
    payload: ChallengeConfigUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    host_id = _host_id(host_id)
    config = upsert_config(db, host_id, payload)
    logger.info(f"Challenge config for host={host_id} updated by {user.subject}")
    return config.to_response()


@router.delete("/hosts/{host_id}/challenge/config", status_code=status.HTTP_204_NO_CONTENT)
def delete_host_config(
    host_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    host_id = _host_id(host_id)
    if not delete_config(db, host_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="config_not_found")
    logger.info(f"Challenge config for host={host_id} deleted by {user.subject}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------- Stats ----------------
@router.get("/challenge/stats", response_model=ChallengeStats)
def get_stats(
    proxy_host_id: Optional[str] = Query(default=None),
    hours: Optional[int] = Query(default=None, ge=1, le=24 * 30),
    gate: ChallengeGate = Depends(get_gate),
    _: User = Depends(get_current_user),
):
    return gate.stats((proxy_host_id or "").strip() or None, hours)


# ---------------- Tokens ----------------
@router.post("/challenge/tokens/{token_id}/revoke", response_model=RevokeResponse)
def revoke_token(
    token_id: str,
    payload: Optional[RevokeTokenPayload] = None,
    gate: ChallengeGate = Depends(get_gate),
    user: User = Depends(require_role("admin")),
):
    if gate.tokens.get(token_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="token_not_found")
    reason = (payload or RevokeTokenPayload()).reason
    revoked = gate.revoke_token(token_id, f"{reason} ({user.subject})")
    return RevokeResponse(revoked=1 if revoked else 0)


@router.post("/challenge/tokens/revoke-ip", response_model=RevokeResponse)
def revoke_ip(
    payload: RevokeIpPayload,
    gate: ChallengeGate = Depends(get_gate),
    user: User = Depends(require_role("admin")),
):
    count = gate.revoke_ip(payload.client_ip.strip(), f"{payload.reason} ({user.subject})")
    return RevokeResponse(revoked=count)


@router.post("/challenge/tokens/purge", response_model=PurgeResponse)
def purge_tokens(
    gate: ChallengeGate = Depends(get_gate),
    _: User = Depends(require_role("admin")),
):
    return PurgeResponse(deleted=gate.purge_expired())
