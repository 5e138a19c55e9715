import os

# Settings are read at import time; point the app at SQLite before importing it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from main import app
from app.core.base import Base
from app.core.database import get_db
from app.core.deps import get_whatsapp_gateway
from app.models.user import User
from app.models.workspace import Workspace, MemberRole
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.rule_repo import RuleRepository
from app.repositories.workspace_repo import WorkspaceRepository
from app.services.notification_service import DispatchResult

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_TOKEN = "test-webhook-token"


class FakeGateway:
    """Records sends instead of calling the provider."""

    def __init__(self, result: DispatchResult | None = None, error: Exception | None = None):
        self.result = result or DispatchResult(success=True, raw_response="Success.")
        self.error = error
        self.calls: list[dict] = []

    async def send(self, phone, campaign_name, source_label, params):
        self.calls.append({
            "phone": phone,
            "campaign_name": campaign_name,
            "source_label": source_label,
            "params": list(params),
        })
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(db_session):
    """A workspace with an admin and two agents, committed."""
    workspace_repo = WorkspaceRepository(db_session)
    workspace = await workspace_repo.create(Workspace(name="Acme Academy", webhook_token=WEBHOOK_TOKEN))

    admin = User(name="Asha Admin", email="admin@example.com")
    agent_a = User(name="Ravi Agent", email="ravi@example.com")
    agent_b = User(name="Meera Agent", email="meera@example.com")
    await workspace_repo.add_member(workspace.id, agent_a, MemberRole.MEMBER)
    await workspace_repo.add_member(workspace.id, admin, MemberRole.ADMIN)
    await workspace_repo.add_member(workspace.id, agent_b, MemberRole.MEMBER)
    await db_session.commit()

    return {
        "workspace": workspace,
        "admin": admin,
        "agent_a": agent_a,
        "agent_b": agent_b,
    }


@pytest.fixture
def repos(db_session):
    return {
        "leads": LeadRepository(db_session),
        "rules": RuleRepository(db_session),
        "activities": ActivityRepository(db_session),
        "workspaces": WorkspaceRepository(db_session),
    }


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def client(session_factory, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_whatsapp_gateway] = lambda: fake_gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
