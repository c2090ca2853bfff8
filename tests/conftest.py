"""
Shared test fixtures — async DB, staff users with tokens, mocked outbound services,
FastAPI test client.
"""

import hashlib
import hmac
import itertools
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.auth import create_access_token
from backoffice.config import settings
from backoffice.database import Base, get_db
from backoffice.main import app
from backoffice.models.budget import Budget
from backoffice.models.user import User
from backoffice.services.payment_gateway import PaymentLink


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory):
    """FastAPI test client with test DB injected."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Self-managed sessions → test DB ─────────────────────

@pytest.fixture(autouse=True)
def _own_sessions(session_factory):
    """Modules that open their own session (notify, audit log, reconciler) use the test DB."""
    with patch("backoffice.services.notify.async_session", session_factory), \
         patch("backoffice.routes.activity.async_session", session_factory), \
         patch("backoffice.services.reconciler.async_session", session_factory):
        yield


# ── Outbound services ───────────────────────────────────

@pytest.fixture(autouse=True)
def test_settings(tmp_path):
    """Deterministic settings: SMTP 'configured', Telegram off, uploads in tmp."""
    with patch.object(settings, "smtp_email", "studio@example.com"), \
         patch.object(settings, "smtp_app_password", "app-password"), \
         patch.object(settings, "telegram_bot_token", ""), \
         patch.object(settings, "telegram_chat_id", ""), \
         patch.object(settings, "stripe_secret_key", "sk_test_123"), \
         patch.object(settings, "stripe_webhook_secret", "whsec_test"), \
         patch.object(settings, "public_app_url", "https://app.example.com"), \
         patch.object(settings, "upload_dir", str(tmp_path / "contratos")):
        yield settings


@pytest.fixture(autouse=True)
def outbox():
    """Replaces the SMTP round-trip; each call is (sender, password, to, raw_message)."""
    with patch("backoffice.services.email_service._deliver", new_callable=MagicMock) as deliver:
        yield deliver


@pytest.fixture(autouse=True)
def stripe_links():
    """Fake Stripe payment links with unique ids."""
    counter = itertools.count(1)

    async def _create(amount_cents, description, metadata):
        n = next(counter)
        return PaymentLink(id=f"plink_test_{n}", url=f"https://buy.stripe.com/test_{n}")

    with patch(
        "backoffice.services.payment_gateway.create_payment_link",
        new_callable=AsyncMock,
        side_effect=_create,
    ) as mock_create:
        yield mock_create


def sent_to(outbox) -> list[str]:
    return [c.args[2] for c in outbox.call_args_list]


def stripe_signature(payload: bytes, secret: str = "whsec_test", timestamp: int | None = None) -> str:
    """Stripe-Signature header value, computed the way Stripe signs webhook deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


# ── Users & tokens ──────────────────────────────────────

@pytest_asyncio.fixture()
async def users(db_session):
    """One user per role: admin, project manager, plain team member, customer."""
    people = {
        "admin": User(name="Ana Admin", email="ana@studio.example.com", role="ADMIN"),
        "manager": User(
            name="Paulo Gerente", email="paulo@studio.example.com",
            role="TEAM_MEMBER", team_role="Gerente de Projetos",
        ),
        "member": User(
            name="Dani Dev", email="dani@studio.example.com",
            role="TEAM_MEMBER", team_role="Desenvolvedor",
        ),
        "customer": User(name="Carla Cliente", email="carla@cliente.example.com", role="USER"),
    }
    db_session.add_all(people.values())
    await db_session.commit()
    return people


@pytest.fixture
def headers(users):
    return {
        key: {"Authorization": f"Bearer {create_access_token(user.id)}"}
        for key, user in users.items()
    }


# ── Budgets ─────────────────────────────────────────────

@pytest.fixture
def make_budget(db_session):
    """Insert a budget directly; returns the committed row."""

    async def _make(**overrides) -> Budget:
        data = {
            "status": "pending",
            "client_name": "Maria Souza",
            "client_email": "maria@cliente.example.com",
            "client_phone": "(11) 98765-4321",
            "project_type": "Site institucional",
            "complexity": "medio",
            "timeline": "normal",
            "final_value": Decimal("10000.00"),
        }
        data.update(overrides)
        budget = Budget(**data)
        db_session.add(budget)
        await db_session.commit()
        await db_session.refresh(budget)
        return budget

    return _make


async def reload(db_session, model, ident):
    """Fresh copy of a row after other sessions changed it."""
    return await db_session.get(model, ident, populate_existing=True)
