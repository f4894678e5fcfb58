import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET", "test-secret-key-for-socialchat-tests")

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from socialchat.db import get_db_session
from socialchat.main import app
from socialchat.models import User, metadata
from socialchat.realtime.gateway import ChatGateway, StoreScope

from test_helpers import auth_headers, create_test_user, insert_users

# Use an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Master fixture to manage table creation/dropping and provide session maker
@pytest.fixture(scope="function")
async def db_test_session_manager() -> (
    AsyncGenerator[async_sessionmaker[AsyncSession], None]
):
    # One shared connection so every session sees the same in-memory database
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(test_engine, expire_on_commit=False)

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_test_session_manager: async_sessionmaker[AsyncSession]):
    """Drop-in replacement for ``get_db_session`` bound to the test database."""

    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with db_test_session_manager() as session:
            yield session

    return override_get_db_session


@pytest.fixture(scope="function")
async def scope(
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[StoreScope, None]:
    """Services bound to a single session, for service-level tests."""
    async with db_test_session_manager() as session:
        yield StoreScope(session)


@pytest.fixture(scope="function")
def make_user(db_test_session_manager: async_sessionmaker[AsyncSession]):
    async def _make_user(name: str, **kwargs) -> User:
        (user,) = await insert_users(
            db_test_session_manager, create_test_user(name=name, **kwargs)
        )
        return user

    return _make_user


@pytest.fixture(scope="function")
def gateway(session_factory) -> ChatGateway:
    return ChatGateway(session_factory=session_factory)


# Fixture for the FastAPI app with overridden dependencies
@pytest.fixture(scope="function")
def test_app(session_factory) -> FastAPI:
    app.dependency_overrides[get_db_session] = session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture(scope="function")
async def alice(make_user) -> User:
    return await make_user("Alice")


@pytest.fixture(scope="function")
async def bob(make_user) -> User:
    return await make_user("Bob")


@pytest.fixture(scope="function")
async def alice_headers(alice: User) -> dict[str, str]:
    return await auth_headers(alice)


@pytest.fixture(scope="function")
async def bob_headers(bob: User) -> dict[str, str]:
    return await auth_headers(bob)
