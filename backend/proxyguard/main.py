# backend/proxyguard/main.py
import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

# rate limiting
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from proxyguard.core.rate_limit import limiter
from proxyguard.core.settings import DEFAULT_JWT_SECRET, get_settings
from proxyguard.db import SessionLocal, init_db
from proxyguard.routers import admin, challenge
from proxyguard.security.logger import challenge_logger as logger
from proxyguard.security.tokens import TokenStore

# ---- Default security headers ----
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "frame-ancestors 'none'; "
        "object-src 'none'; "
        "base-uri 'self'; "
        "form-action 'self'"
    ),
}
# NOTE: HSTS only takes effect when served over HTTPS
STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains"

JSON_BODY_METHODS = ("POST", "PUT")


def purge_expired_tokens() -> int:
    """One sweep of expired bypass tokens on a fresh session."""
    db = SessionLocal()
    try:
        return TokenStore(db).purge_expired(get_settings().token_retention_seconds)
    finally:
        db.close()


async def _purge_loop(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            deleted = await asyncio.to_thread(purge_expired_tokens)
        except Exception as exc:
            logger.error(f"Token purge failed: {exc}")
            continue
        if deleted:
            logger.info(f"Purged {deleted} expired challenge token(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if get_settings().jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set; admin tokens use the built-in development secret")
    interval = get_settings().token_purge_interval_seconds
    task = asyncio.create_task(_purge_loop(interval)) if interval > 0 else None
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


settings = get_settings()

app = FastAPI(title="Proxy Guard Challenge Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "content-type", "x-requested-with"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content={"error": "too_many_requests", "detail": "Try again later."},
    )
    for header, value in (getattr(exc, "headers", {}) or {}).items():
        response.headers.setdefault(header, value)
    return response


# ---- Security headers middleware ----
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    # setdefault: the challenge page sends its own nonce-based CSP
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    response.headers.setdefault("Strict-Transport-Security", STRICT_TRANSPORT_SECURITY)
    return response


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    try:
        return int(request.headers.get("content-length") or 0) > 0
    except ValueError:
        return True


# ---- HTTP Hardening Middleware ----
@app.middleware("http")
async def check_http_hardening(request: Request, call_next):
    # Bodies must be JSON; bodiless admin actions (purge, revoke) are fine.
    if request.method in JSON_BODY_METHODS and _has_body(request):
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("application/json"):
            return JSONResponse(
                status_code=415,
                content={"detail": "Unsupported Media Type. Must be application/json"},
            )

    response: Response = await call_next(request)
    return response


# ---- Health endpoint (used by tests and the container healthcheck) ----
@app.get("/health")
def health():
    return {"ok": True}


app.include_router(challenge.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)
