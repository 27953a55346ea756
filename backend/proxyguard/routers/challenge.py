# backend/proxyguard/routers/challenge.py
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response

from proxyguard.core.rate_limit import limiter, verify_rate_limit
from proxyguard.core.settings import get_settings
from proxyguard.dependencies import get_gate
from proxyguard.models import VerifyCaptchaRequest, VerifyCaptchaResponse
from proxyguard.security.challenge_page import ACCESS_DENIED_PAGE, ERROR_PAGE, new_nonce
from proxyguard.security.client_ip import client_ip
from proxyguard.security.gate import (
    ChallengeDisabledError,
    ChallengeError,
    ChallengeGate,
)
from proxyguard.security.logger import challenge_logger as logger

CHALLENGE_COOKIE = "ng_challenge"
DEFAULT_REASON = "geo_restriction"
MAX_REASON_LENGTH = 32
NO_STORE = {"Cache-Control": "no-store"}

router = APIRouter(prefix="/challenge", tags=["challenge"])


def _optional(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


# ---------------- Verify ----------------
@router.post("/verify", response_model=VerifyCaptchaResponse, response_model_exclude_none=True)
@limiter.limit(verify_rate_limit)
def verify(
    request: Request,
    payload: VerifyCaptchaRequest,
    gate: ChallengeGate = Depends(get_gate),
):
    if not payload.token.strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "CAPTCHA token is required"},
            headers=NO_STORE,
        )

    ip = client_ip(request)
    user_agent = request.headers.get("user-agent", "")
    try:
        result = gate.verify_captcha(payload, ip, user_agent)
    except ChallengeError as exc:
        # Config problems, not a failed solve.
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "error": str(exc)},
            headers=NO_STORE,
        )

    body = VerifyCaptchaResponse(
        success=result.success,
        token=result.token,
        expires_at=result.expires_at,
        expires_in=result.expires_in,
        error=result.error,
        score=result.score,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=NO_STORE,
    )


# ---------------- auth_request target ----------------
@router.get("/validate")
def validate(
    request: Request,
    x_challenge_token: Optional[str] = Header(default=None),
    x_proxy_host_id: Optional[str] = Header(default=None),
    x_geo_blocked: Optional[str] = Header(default=None),
    gate: ChallengeGate = Depends(get_gate),
):
    """
    nginx only looks at the status code: 200 lets the request through,
    anything else sends the browser to the challenge page.
    """
    token = _optional(x_challenge_token) or _optional(request.cookies.get(CHALLENGE_COOKIE))
    decision = gate.check_access(
        token,
        client_ip(request),
        _optional(x_proxy_host_id),
        user_agent=request.headers.get("user-agent"),
        geo_blocked=x_geo_blocked,
    )
    code = status.HTTP_200_OK if decision.allowed else status.HTTP_401_UNAUTHORIZED
    return Response(status_code=code, headers=NO_STORE)


# ---------------- Page ----------------
@router.get("/page", response_class=HTMLResponse)
def page(
    request: Request,
    host: Optional[str] = Query(default=None),
    reason: Optional[str] = Query(default=None),
    return_url: Optional[str] = Query(default=None, alias="return"),
    gate: ChallengeGate = Depends(get_gate),
):
    proxy_host_id = _optional(host)
    reason = (_optional(reason) or DEFAULT_REASON)[:MAX_REASON_LENGTH]
    try:
        rendered = gate.render_page(
            proxy_host_id,
            reason,
            new_nonce(),
            client_ip(request),
            request.headers.get("user-agent", ""),
            return_url=return_url,
        )
    except ChallengeDisabledError:
        return HTMLResponse(ACCESS_DENIED_PAGE, status_code=status.HTTP_403_FORBIDDEN, headers=NO_STORE)
    except ChallengeError as exc:
        logger.error(f"Challenge page unavailable for host={proxy_host_id}: {exc}")
        return HTMLResponse(ERROR_PAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, headers=NO_STORE)

    headers = dict(NO_STORE)
    headers["Content-Security-Policy"] = rendered.content_security_policy
    return HTMLResponse(rendered.html, status_code=status.HTTP_200_OK, headers=headers)


@router.get("/favicon.ico")
def favicon():
    assets_dir = get_settings().challenge_assets_dir
    if assets_dir:
        path = Path(assets_dir) / "favicon.ico"
        if path.is_file():
            return FileResponse(path, media_type="image/x-icon", headers={"Cache-Control": "public, max-age=86400"})
    return Response(status_code=status.HTTP_404_NOT_FOUND)
