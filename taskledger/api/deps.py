"""
taskledger.api.deps — FastAPI dependency injection
===================================================

Shared objects (engine, settings cache, collaborators, config) are built
once in the application lifespan and stored on ``app.state``; the
dependencies below only hand them out.
"""

from __future__ import annotations

import os
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from taskledger.config import LedgerConfig
from taskledger.engine.cache import ConfigCache
from taskledger.engine.rules import EconomyRules
from taskledger.services.notifications import MembershipChecker, Notifier

_WEAK_SECRETS = frozenset({
    "taskledger-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_cache(request: Request) -> ConfigCache:
    return request.app.state.cache


def get_rules(cache: Annotated[ConfigCache, Depends(get_cache)]) -> EconomyRules:
    """The economy rules snapshot for this request."""
    return cache.rules()


def get_config(request: Request) -> LedgerConfig:
    return request.app.state.config


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_membership(request: Request) -> MembershipChecker:
    return request.app.state.membership


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def admin_id(admin: dict) -> int:
    """Numeric actor id from the token's ``sub`` claim (0 if not numeric)."""
    try:
        return int(admin.get("sub", 0))
    except (TypeError, ValueError):
        return 0
