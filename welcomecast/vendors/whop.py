"""
welcomecast.vendors.whop — Whop Platform Client
================================================

Thin async wrapper over the Whop REST API covering the four collaborator
surfaces the app needs:

* **Identity / access** — verify the ``x-whop-user-token`` JWT, check a
  user's access level on an experience, look up users, experiences and
  companies.
* **Messaging** — support channels (list / create) and messages.
* **Billing** — memberships (list / cancel) on the app's own company.
* **App directory** — experiences installed on a company, member listings.

Every response is validated into a pydantic model before it leaves this
module; nothing downstream sees raw JSON.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from typing import Any, Literal

import httpx
import jwt
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from welcomecast.exceptions import (
    AuthorizationError,
    ChannelConflictError,
    ConfigurationError,
    WhopAPIError,
)

logger = logging.getLogger(__name__)

WHOP_API = "https://api.whop.com/api/v1"
WHOP_LEGACY_API = "https://api.whop.com/v5"
TOKEN_ISSUER = "urn:whopcom:exp-proxy"
DEFAULT_TIMEOUT = 10.0

# Phrases Whop uses when a customer already has a support channel.
_CONFLICT_MARKERS = ("already", "exists")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------
class _WhopModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserRef(_WhopModel):
    id: str
    username: str | None = None
    name: str | None = None


class CompanyRef(_WhopModel):
    id: str
    title: str | None = None
    route: str | None = None


class PlanRef(_WhopModel):
    id: str


class AccessCheck(_WhopModel):
    has_access: bool
    access_level: Literal["admin", "customer", "no_access"] = "no_access"


class UserProfile(_WhopModel):
    id: str
    name: str | None = None
    username: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.name or self.username


class Experience(_WhopModel):
    id: str
    name: str | None = None
    company: CompanyRef | None = None
    app: dict[str, Any] | None = None

    @property
    def company_id(self) -> str | None:
        return self.company.id if self.company else None


class Company(_WhopModel):
    id: str
    title: str | None = None
    route: str | None = None


class SupportChannel(_WhopModel):
    id: str
    customer_user: UserRef | None = None


class Message(_WhopModel):
    id: str


class Membership(_WhopModel):
    id: str
    status: str
    plan: PlanRef | None = None
    user: UserRef | None = None
    cancel_at_period_end: bool = False
    renewal_period_end: str | None = None

    @property
    def plan_id(self) -> str | None:
        return self.plan.id if self.plan else None


class AppMember(_WhopModel):
    model_config = ConfigDict(extra="allow")

    id: str
    user: UserRef | str | None = None
    status: str | None = None


class _Page(_WhopModel):
    data: list[dict[str, Any]] = Field(default_factory=list)
    page_info: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class WhopClient:
    """Async Whop API client.

    Parameters
    ----------
    api_key:
        App API key (``WHOP_API_KEY``).
    app_id:
        App identifier (``WHOP_APP_ID``); the expected token audience.
    token_public_key:
        PEM public key used to verify user tokens.
    transport:
        Optional ``httpx`` transport — tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_key: str,
        app_id: str,
        token_public_key: str | None = None,
        *,
        token_algorithm: str = "ES256",
        base_url: str = WHOP_API,
        legacy_base_url: str = WHOP_LEGACY_API,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.app_id = app_id
        self.token_public_key = token_public_key
        self.token_algorithm = token_algorithm
        self.base_url = base_url.rstrip("/")
        self.legacy_base_url = legacy_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> WhopClient:
        """Build a client from ``WHOP_*`` environment variables."""
        api_key = os.getenv("WHOP_API_KEY", "").strip()
        app_id = os.getenv("WHOP_APP_ID", "").strip()
        missing = [
            name for name, value in (("WHOP_API_KEY", api_key), ("WHOP_APP_ID", app_id))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Whop is not configured: missing " + ", ".join(missing)
            )
        public_key = os.getenv("WHOP_TOKEN_PUBLIC_KEY", "").replace("\\n", "\n").strip() or None
        return cls(
            api_key,
            app_id,
            public_key,
            token_algorithm=os.getenv("WHOP_TOKEN_ALGORITHM", "ES256"),
        )

    # -----------------------------------------------------------------------
    # Transport helpers
    # -----------------------------------------------------------------------
    def _client(self, base_url: str | None = None) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        return httpx.AsyncClient(
            base_url=base_url or self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> Any:
        try:
            async with self._client(base_url) as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise WhopAPIError(f"Whop API request failed: {method} {path}: {exc}") from exc
        if resp.status_code >= 400:
            body = resp.text
            logger.error(
                "Whop API error %s %s → %d: %s", method, path, resp.status_code, body[:500]
            )
            raise WhopAPIError(
                f"Whop API request failed: {method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                body=body,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise WhopAPIError(
                f"Whop API returned non-JSON for {method} {path}",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

    async def _paginate(self, path: str, params: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """Yield every item of a cursor-paginated listing."""
        cursor: str | None = None
        while True:
            page_params = dict(params)
            if cursor:
                page_params["after"] = cursor
            page = _parse(_Page, await self._request("GET", path, params=page_params))
            for item in page.data:
                yield item
            if not page.page_info.get("has_next_page"):
                return
            cursor = page.page_info.get("end_cursor")
            if not cursor:
                return

    # -----------------------------------------------------------------------
    # Identity / access
    # -----------------------------------------------------------------------
    def verify_user_token(self, token: str | None) -> str:
        """Verify a Whop user token and return the user id (``sub`` claim).

        Raises
        ------
        AuthorizationError
            If the token is missing, malformed, expired, or not for this app.
        ConfigurationError
            If no verification key is configured.
        """
        if not token:
            raise AuthorizationError("Missing x-whop-user-token header")
        if not self.token_public_key:
            raise ConfigurationError("WHOP_TOKEN_PUBLIC_KEY is not set")
        try:
            payload = jwt.decode(
                token,
                self.token_public_key,
                algorithms=[self.token_algorithm],
                audience=self.app_id,
                issuer=TOKEN_ISSUER,
            )
        except InvalidTokenError as exc:
            raise AuthorizationError(f"Invalid user token: {exc}") from exc
        user_id = payload.get("sub")
        if not user_id:
            raise AuthorizationError("User token has no subject")
        return str(user_id)

    async def check_access(self, user_id: str, resource_id: str) -> AccessCheck:
        data = await self._request("GET", f"/users/{user_id}/access/{resource_id}")
        return _parse(AccessCheck, data)

    async def get_user(self, user_id: str) -> UserProfile:
        return _parse(UserProfile, await self._request("GET", f"/users/{user_id}"))

    async def get_experience(self, experience_id: str) -> Experience:
        return _parse(Experience, await self._request("GET", f"/experiences/{experience_id}"))

    async def get_company(self, company_id: str) -> Company:
        return _parse(Company, await self._request("GET", f"/companies/{company_id}"))

    async def list_experiences(self, company_id: str) -> list[Experience]:
        return [
            _parse(Experience, item)
            async for item in self._paginate("/experiences", {"company_id": company_id})
        ]

    # -----------------------------------------------------------------------
    # Messaging
    # -----------------------------------------------------------------------
    async def list_support_channels(self, company_id: str) -> list[SupportChannel]:
        return [
            _parse(SupportChannel, item)
            async for item in self._paginate("/support_channels", {"company_id": company_id})
        ]

    async def create_support_channel(self, company_id: str, user_id: str) -> SupportChannel:
        """Open a support channel with *user_id*.

        Raises :class:`ChannelConflictError` when Whop reports the user is
        already attached to a channel.
        """
        try:
            data = await self._request(
                "POST",
                "/support_channels",
                json={"company_id": company_id, "user_id": user_id},
            )
        except WhopAPIError as exc:
            body = (exc.body or "").lower()
            if exc.status_code in (400, 409, 422) and any(m in body for m in _CONFLICT_MARKERS):
                raise ChannelConflictError(
                    f"User {user_id} already has a support channel",
                    status_code=exc.status_code,
                    body=exc.body,
                ) from exc
            raise
        return _parse(SupportChannel, data)

    async def send_message(self, channel_id: str, content: str) -> Message:
        data = await self._request(
            "POST", "/messages", json={"channel_id": channel_id, "content": content}
        )
        return _parse(Message, data)

    async def send_direct_message(self, company_id: str, to_user_id: str, content: str) -> Message:
        """Send a direct message to a user on behalf of *company_id*."""
        data = await self._request(
            "POST",
            "/direct_messages",
            json={"company_id": company_id, "to_user_id": to_user_id, "content": content},
        )
        return _parse(Message, data)

    # -----------------------------------------------------------------------
    # Billing
    # -----------------------------------------------------------------------
    async def list_memberships(self, company_id: str, user_id: str) -> list[Membership]:
        return [
            _parse(Membership, item)
            async for item in self._paginate(
                "/memberships", {"company_id": company_id, "user_ids": user_id}
            )
        ]

    async def cancel_membership(self, membership_id: str, *, at_period_end: bool = True) -> Membership:
        mode = "at_period_end" if at_period_end else "immediate"
        data = await self._request(
            "POST",
            f"/memberships/{membership_id}/cancel",
            json={"cancellation_mode": mode},
        )
        return _parse(Membership, data)

    # -----------------------------------------------------------------------
    # Member directory (legacy page-numbered endpoint)
    # -----------------------------------------------------------------------
    async def list_members(self, company_id: str, *, per_page: int = 50) -> tuple[list[AppMember], int]:
        """Return ``(members, total_count)`` for *company_id*."""
        members: list[AppMember] = []
        total_count = 0
        page, total_pages = 1, 1
        while page <= total_pages:
            data = await self._request(
                "GET",
                "/app/members",
                base_url=self.legacy_base_url,
                params={"company_id": company_id, "page": page, "per": per_page},
            )
            members.extend(_parse(AppMember, item) for item in data.get("data") or [])
            pagination = data.get("pagination") or {}
            total_pages = int(pagination.get("total_pages") or 1)
            total_count = int(pagination.get("total_count") or 0)
            page += 1
        return members, total_count or len(members)


def _parse(model: type[BaseModel], data: Any):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise WhopAPIError(f"Unexpected Whop response for {model.__name__}: {exc}") from exc
