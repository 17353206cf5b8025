"""
welcomecast.api.auth — Whop identity & access endpoints
=========================================================

The app runs inside a Whop iframe; Whop's proxy attaches an
``x-whop-user-token`` header to every request.  These endpoints tell the
frontend who the viewer is and whether they administer the experience.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from welcomecast.api.deps import get_user_id, get_whop
from welcomecast.exceptions import WhopAPIError
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])


class ValidateAccessBody(BaseModel):
    experience_id: str = Field(alias="experienceId", min_length=1)


@router.post("/validate-access")
async def validate_access(
    body: ValidateAccessBody,
    user_id: Annotated[str, Depends(get_user_id)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    """Access level of the viewer on an experience, plus display details."""
    access = await whop.check_access(user_id, body.experience_id)

    user_name = username = None
    try:
        profile = await whop.get_user(user_id)
        user_name, username = profile.display_name, profile.username
    except WhopAPIError as exc:
        logger.warning("Could not fetch user %s for validate-access: %s", user_id, exc)

    company_id = None
    try:
        experience = await whop.get_experience(body.experience_id)
        company_id = experience.company_id
    except WhopAPIError as exc:
        logger.warning("Could not fetch experience %s: %s", body.experience_id, exc)

    return {
        "hasAccess": access.has_access,
        "accessLevel": access.access_level,
        "userId": user_id,
        "userName": user_name,
        "username": username,
        "companyId": company_id,
    }


@router.get("/user")
async def current_user(
    user_id: Annotated[str, Depends(get_user_id)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    profile = await whop.get_user(user_id)
    return {"user": profile.model_dump()}
