"""
Pytest configuration for the application
"""
import os
from decimal import Decimal
from typing import AsyncGenerator, Dict

import httpx
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.auth.jwt import create_access_token
from src.core.config import settings
from src.db.base import Base
from src.db.session import build_engine, build_session_factory, get_session_factory
from src.main import create_application
from src.repositories.feature_repo import FeatureRepo
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.repositories.plan_repo import PlanRepo
from src.schemas.feature import FeatureCreate, FeatureRead
from src.schemas.plan import PlanCreate, PlanRead
from src.services.feature_service import FeatureService
from src.services.plan_feature_service import PlanFeatureService
from src.services.plan_service import PlanService


# Set test environment and keep runtime settings away from real services
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.JWT_SECRET = "test-secret-key-with-at-least-32-bytes"


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    A fresh SQLite database file per test.

    A file (rather than ``:memory:``) lets independent sessions run
    concurrently against the same data.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
def plan_repo(session_factory) -> PlanRepo:
    return PlanRepo(session_factory)


@pytest.fixture
def feature_repo(session_factory) -> FeatureRepo:
    return FeatureRepo(session_factory)


@pytest.fixture
def plan_feature_repo(session_factory) -> PlanFeatureRepo:
    return PlanFeatureRepo(session_factory)


@pytest.fixture
def plan_service(plan_repo, plan_feature_repo) -> PlanService:
    return PlanService(plan_repo, plan_feature_repo)


@pytest.fixture
def feature_service(feature_repo, plan_feature_repo) -> FeatureService:
    return FeatureService(feature_repo, plan_feature_repo)


@pytest.fixture
def plan_feature_service(plan_feature_repo, plan_repo, feature_repo) -> PlanFeatureService:
    return PlanFeatureService(plan_feature_repo, plan_repo, feature_repo)


@pytest.fixture
def make_plan(plan_repo):
    """Factory inserting a plan with sensible defaults."""

    async def _make(name: str = "Starter", **overrides) -> PlanRead:
        fields = {
            "name": name,
            "slug": name.lower().replace(" ", "-"),
            "price": Decimal("10.00"),
            "billing_interval": "monthly",
        }
        fields.update(overrides)
        return await plan_repo.create(PlanCreate(**fields))

    return _make


@pytest.fixture
def make_feature(feature_repo):
    """Factory inserting a feature with sensible defaults."""

    async def _make(key_name: str = "api_access", **overrides) -> FeatureRead:
        fields = {
            "key_name": key_name,
            "display_name": key_name.replace("_", " ").title(),
        }
        fields.update(overrides)
        return await feature_repo.create(FeatureCreate(**fields))

    return _make


@pytest_asyncio.fixture
async def test_app(session_factory) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application bound to the per-test database.
    """
    app = create_application()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    token = create_access_token("admin@example.com", role="admin")
    return {"Authorization": f"Bearer {token}"}
