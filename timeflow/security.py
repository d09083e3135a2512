from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from timeflow.errors import ApiError
from timeflow.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger("timeflow.security")

ACCESS_TOKEN_TYPE = "access"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_worker_access_token(
    worker_id: uuid.UUID,
    *,
    expires_in: timedelta = timedelta(hours=12),
    extra_claims: dict[str, Any] | None = None,
) -> str:
    settings = get_settings()
    now = _utcnow()
    claims: dict[str, Any] = {
        "sub": str(worker_id),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
        "jti": str(uuid.uuid4()),
        "typ": ACCESS_TOKEN_TYPE,
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def decode_worker_subject(token: str) -> uuid.UUID:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="NOT_AUTHENTICATED", message="Token is invalid.") from exc

    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        raise ApiError(status_code=401, code="NOT_AUTHENTICATED", message="Token type is invalid.")

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise ApiError(status_code=401, code="NOT_AUTHENTICATED", message="Token subject is invalid.") from exc


def get_optional_worker_subject(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> uuid.UUID | None:
    """Bearer subject when a valid worker token is present, otherwise ``None``.

    Kiosk requests come without a token and name the worker in the body.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    try:
        subject = decode_worker_subject(credentials.credentials)
    except ApiError as exc:
        logger.info(
            "bearer_token_ignored",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "reason": exc.message,
            },
        )
        return None

    request.state.actor = "worker"
    request.state.actor_id = str(subject)
    return subject
