from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from proxyguard.core.settings import DEFAULT_JWT_SECRET, get_settings

Role = Literal["admin", "viewer"]

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class User:
    def __init__(self, subject: str, role: Role):
        self.subject = subject
        self.role = role


def _jwt_config() -> tuple[str, str]:
    settings = get_settings()
    secret = settings.jwt_secret or DEFAULT_JWT_SECRET
    algorithm = settings.jwt_algorithm or "HS256"
    return secret, algorithm


def create_access_token(subject: str, role: Role, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    secret, algorithm = _jwt_config()
    return jwt.encode({"sub": subject, "role": role, "iat": now, "exp": expire}, secret, algorithm=algorithm)


def _parse_token(token: str) -> tuple[Optional[str], Optional[Role]]:
    secret, algorithm = _jwt_config()
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        return (None, None)

    subject = payload.get("sub")
    role = payload.get("role")
    if isinstance(subject, str) and role in ("admin", "viewer"):
        return (subject, role)  # type: ignore[return-value]
    return (None, None)


def get_current_user(request: Request) -> User:
    auth = request.headers.get("authorization", "")
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        subject, role = _parse_token(parts[1])
        if role and subject:
            return User(subject=subject, role=role)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthenticated")


def require_role(need: Role):
    def _dep(user: User = Depends(get_current_user)) -> User:
        if user.role != need:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return user

    return _dep
