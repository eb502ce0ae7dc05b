import logging

import jwt
from fastapi import Header, HTTPException, Request
from jwt.exceptions import PyJWTError as JWTError

from release_engine.config import settings
from release_engine.db import SessionLocal
from release_engine.services.common import Actor

logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting bearer token")
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_user_auth(
    request: Request,
    authorization: str | None = Header(default=None),
):
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    roles_value = payload.get("roles")
    roles = [str(role) for role in roles_value] if isinstance(roles_value, list) else []
    request.state.actor_id = str(user_id)
    return {
        "user_id": str(user_id),
        "email": payload.get("email"),
        "roles": roles,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def actor_from_auth(auth: dict) -> Actor:
    return Actor(
        user_id=str(auth["user_id"]),
        email=auth.get("email"),
        roles=frozenset(auth.get("roles") or ()),
        ip_address=auth.get("ip_address"),
        user_agent=auth.get("user_agent"),
    )


__all__ = [
    "actor_from_auth",
    "get_db",
    "require_user_auth",
]
