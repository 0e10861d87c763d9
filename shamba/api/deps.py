"""
shamba.api.deps — FastAPI dependency injection
================================================

The identity provider issues HS256 bearer tokens; the ``sub`` claim is
the opaque user id every mutating service call receives.  Tokens are
only decoded here, never issued.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from shamba.config import CommunityConfig, load_config
from shamba.database.engine import create_db_engine
from shamba.services.aggregation_service import AggregationService
from shamba.services.content_service import ContentService
from shamba.services.engagement_service import EngagementService
from shamba.services.event_service import EventService
from shamba.services.taxonomy_service import TaxonomyService

_WEAK_SECRETS = frozenset({
    "shamba-dev-secret-change-me",
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
            "Use the signing secret shared with the identity provider."
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


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> CommunityConfig:
    return load_config()


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def _decode_subject(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    sub = payload.get("sub")
    return str(sub) if sub else None


def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the caller's user id. Raises 401 if there is none."""
    user_id = _decode_subject(authorization)
    if user_id is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return user_id


def get_optional_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    """Viewer id for read endpoints; anonymous callers get ``None``."""
    return _decode_subject(authorization)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------
def get_taxonomy_service(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CommunityConfig, Depends(get_config)],
) -> TaxonomyService:
    return TaxonomyService(engine, cfg)


def get_content_service(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CommunityConfig, Depends(get_config)],
    taxonomy: Annotated[TaxonomyService, Depends(get_taxonomy_service)],
) -> ContentService:
    return ContentService(engine, cfg, taxonomy)


def get_engagement_service(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CommunityConfig, Depends(get_config)],
) -> EngagementService:
    return EngagementService(engine, cfg)


def get_event_service(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CommunityConfig, Depends(get_config)],
) -> EventService:
    return EventService(engine, cfg)


def get_aggregation_service(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[CommunityConfig, Depends(get_config)],
) -> AggregationService:
    return AggregationService(engine, cfg)
