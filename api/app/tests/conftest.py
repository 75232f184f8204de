"""Shared pytest fixtures for engine and API tests with database isolation."""

from __future__ import annotations

import os
import uuid

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.api.deps import get_db, get_dispatcher, get_session_factory
from app.core.config import settings
from app.db.base_class import Base
from app.main import app
from app.services.dispatcher import TriggerDispatcher
from app.services.loop_guard import LoopGuard
from app.services.rule_store import rule_store


@pytest.fixture(autouse=True)
def _fresh_rule_cache() -> None:
    rule_store.clear()
    yield
    rule_store.clear()


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncEngine:
    database_url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'boardflow-test.db'}"
    url = make_url(database_url)
    schema_name: str | None = None
    engine = create_async_engine(database_url, future=True)
    if url.drivername.startswith("postgresql"):
        # Isolate each test run in its own schema for parallel-friendly cleanup.
        schema_name = f"test_{uuid.uuid4().hex}"
        engine = engine.execution_options(schema_translate_map={None: schema_name})
    async with engine.begin() as conn:
        if schema_name:
            await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            if schema_name:
                await conn.exec_driver_sql(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            else:
                await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture()
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def dispatcher(session_factory) -> TriggerDispatcher:
    active = TriggerDispatcher(
        session_factory,
        rule_store=rule_store,
        loop_guard=LoopGuard(max_depth=10, max_firings=1000, window_seconds=60),
        max_workers=4,
    )
    try:
        yield active
    finally:
        await active.close()


@pytest_asyncio.fixture()
async def client(session: AsyncSession, session_factory, dispatcher: TriggerDispatcher) -> AsyncClient:
    async def _get_test_db():
        yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.clear()
