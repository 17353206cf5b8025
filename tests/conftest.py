"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Keep the app from touching a real database or vendor account.  These must
# be set before anything imports welcomecast.api.
# ---------------------------------------------------------------------------
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WHOP_API_KEY", "test-whop-key")
os.environ.setdefault("WHOP_APP_ID", "app_test")
os.environ.setdefault("FISH_AUDIO_API_KEY", "test-fish-key")

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine, create_engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from welcomecast.config import WelcomecastConfig  # noqa: E402
from welcomecast.database.engine import get_session  # noqa: E402
from welcomecast.database.models import AudioMessage, Base, Creator, Customer  # noqa: E402
from welcomecast.exceptions import AuthorizationError  # noqa: E402
from welcomecast.vendors.fish_audio import FishAudioClient, VoiceModel  # noqa: E402
from welcomecast.vendors.whop import (  # noqa: E402
    AccessCheck,
    CompanyRef,
    Experience,
    Message,
    UserProfile,
    WhopClient,
)

COMPANY_ID = "biz_community"
EXPERIENCE_ID = "exp_community"
OPERATOR_ID = "user_operator"
MEMBER_ID = "user_member"
BILLING_COMPANY_ID = "biz_welcomecast"

_bigint_sqlite_registered = False


def _register_bigint_sqlite_compat():
    """Map BigInteger → INTEGER so autoincrement works on SQLite (idempotent)."""
    global _bigint_sqlite_registered
    if _bigint_sqlite_registered:
        return

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _bigint_sqlite_registered = True


_register_bigint_sqlite_compat()


# Helper to run async code without pytest-asyncio
def run_async(coro):
    loop = asyncio.get_event_loop_policy().new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def token_for(user_id: str) -> str:
    """Fake user token understood by the ``whop`` fixture."""
    return f"token-{user_id}"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Welcomecast tables.

    Uses StaticPool so every thread shares the same in-memory database
    (``run_db`` executes on worker threads).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_creator(engine: Engine, **overrides) -> Creator:
    fields = {
        "whop_user_id": OPERATOR_ID,
        "whop_company_id": COMPANY_ID,
        "whop_experience_id": EXPERIENCE_ID,
        "message_template": "Hey {name}, welcome to {plan}!",
        "voice_model_id": "model_trained",
        "is_setup_complete": True,
        "is_automation_active": True,
        "credits": 20,
        "plan_type": "free",
    }
    fields.update(overrides)
    with get_session(engine) as session:
        creator = Creator(**fields)
        session.add(creator)
        session.flush()
        return creator


def make_customer(engine: Engine, creator: Creator, **overrides) -> Customer:
    fields = {
        "creator_id": creator.id,
        "whop_user_id": MEMBER_ID,
        "whop_member_id": "mem_1",
        "whop_company_id": creator.whop_company_id,
        "name": "Alex",
        "plan_name": "Gold",
    }
    fields.update(overrides)
    with get_session(engine) as session:
        customer = Customer(**fields)
        session.add(customer)
        session.flush()
        return customer


def make_job(engine: Engine, customer: Customer, **overrides) -> AudioMessage:
    fields = {
        "creator_id": customer.creator_id,
        "customer_id": customer.id,
        "personalized_script": "Hey Alex!",
        "status": "completed",
        "audio_data": "data:audio/mp3;base64,SUQz",
    }
    fields.update(overrides)
    with get_session(engine) as session:
        job = AudioMessage(**fields)
        session.add(job)
        session.flush()
        return job


# ---------------------------------------------------------------------------
# Configuration & vendor fakes
# ---------------------------------------------------------------------------
@pytest.fixture
def cfg() -> WelcomecastConfig:
    return WelcomecastConfig(
        app_name="Welcomecast",
        public_base_url="https://welcomecast.test",
        dashboard_port=8000,
        billing_company_id=BILLING_COMPANY_ID,
        billing_plans={"plan_pro": "tier200", "plan_unlimited": "unlimited"},
        tier_credits={"tier200": 200, "unlimited": None},
    )


def _verify(token):
    if not token or not token.startswith("token-"):
        raise AuthorizationError("Invalid user token")
    return token[len("token-"):]


@pytest.fixture
def whop() -> MagicMock:
    """A ``WhopClient`` stand-in; async methods are AsyncMocks via ``spec``."""
    client = MagicMock(spec=WhopClient)
    client.verify_user_token.side_effect = _verify
    client.get_experience.return_value = Experience(
        id=EXPERIENCE_ID, name="Community", company=CompanyRef(id=COMPANY_ID)
    )
    client.check_access.return_value = AccessCheck(has_access=True, access_level="admin")
    client.get_user.return_value = UserProfile(
        id=MEMBER_ID, name="Alex", username="alex", email="alex@example.com"
    )
    client.list_support_channels.return_value = []
    client.send_message.return_value = Message(id="msg_1")
    client.send_direct_message.return_value = Message(id="dm_1")
    client.list_memberships.return_value = []
    client.list_members.return_value = ([], 0)
    client.list_experiences.return_value = []
    return client


@pytest.fixture
def fish_audio() -> MagicMock:
    client = MagicMock(spec=FishAudioClient)
    client.get_model.return_value = VoiceModel(_id="model_trained", state="trained", title="Voice")
    client.generate_speech.return_value = b"ID3-fake-mp3"
    client.create_model.return_value = VoiceModel(_id="model_new", state="training")
    return client


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------
@pytest.fixture
def queue():
    from welcomecast.services.generation_queue import GenerationQueue

    return GenerationQueue(AsyncMock(), workers=1, maxsize=5)


@pytest.fixture
def client(db_engine, cfg, whop, fish_audio, queue):
    """TestClient wired to the SQLite engine and the vendor fakes.

    The lifespan is not entered, so no generation workers run; queued jobs
    stay visible on ``queue``.
    """
    from fastapi.testclient import TestClient

    import welcomecast.api.rate_limit as rl_mod
    from welcomecast.api.deps import get_config, get_engine, get_fish_audio, get_queue, get_whop
    from welcomecast.api.main import app

    original_limiters = dict(rl_mod._limiters)
    rl_mod.configure_rate_limiter(engine=db_engine)

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    app.dependency_overrides[get_whop] = lambda: whop
    app.dependency_overrides[get_fish_audio] = lambda: fish_audio
    app.dependency_overrides[get_queue] = lambda: queue

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
    rl_mod._limiters.clear()
    rl_mod._limiters.update(original_limiters)
