"""
welcomecast.api.deps — FastAPI dependency injection
=====================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Query, Request
from sqlalchemy import Engine

from welcomecast.config import WelcomecastConfig, load_config
from welcomecast.database.engine import create_db_engine
from welcomecast.database.models import Creator
from welcomecast.services import tenant_service
from welcomecast.services.generation_queue import GenerationQueue
from welcomecast.services.welcome_service import WelcomeOrchestrator
from welcomecast.vendors.fish_audio import FishAudioClient
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> WelcomecastConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_whop() -> WhopClient:
    return WhopClient.from_env()


@lru_cache(maxsize=1)
def get_fish_audio() -> FishAudioClient:
    return FishAudioClient.from_env()


def get_orchestrator(
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    fish_audio: Annotated[FishAudioClient, Depends(get_fish_audio)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
) -> WelcomeOrchestrator:
    return WelcomeOrchestrator(engine, whop, fish_audio, cfg)


def get_queue(request: Request) -> GenerationQueue:
    """The queue started by the application lifespan."""
    return request.app.state.generation_queue


def _dev_token() -> str | None:
    if os.getenv("APP_ENV", "").lower() != "development":
        return None
    return os.getenv("WHOP_DEV_TOKEN", "").strip() or None


def get_user_token(
    x_whop_user_token: Annotated[str | None, Header()] = None,
) -> str | None:
    """The Whop user token injected by the iframe proxy.

    Outside Whop (local development with ``APP_ENV=development``) the
    ``WHOP_DEV_TOKEN`` env var stands in for it.
    """
    return x_whop_user_token or _dev_token()


def get_user_id(
    token: Annotated[str | None, Depends(get_user_token)],
    whop: Annotated[WhopClient, Depends(get_whop)],
) -> str:
    """Verified Whop user id.  Raises ``AuthorizationError`` (→ 401)."""
    return whop.verify_user_token(token)


async def get_current_creator(
    experience_id: Annotated[str, Query(alias="experienceId", min_length=1)],
    token: Annotated[str | None, Depends(get_user_token)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
) -> Creator:
    """The calling operator's tenant for the experience in the query string."""
    return await tenant_service.resolve(engine, whop, token, experience_id)
