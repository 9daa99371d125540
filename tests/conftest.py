# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

# settings are read lazily; make sure nothing ever points at a real database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from courierhub.core.config import AppSettings  # noqa: E402
from courierhub.db.base import Base, init_models  # noqa: E402


# =========================================
# per-test sqlite database (file under tmp_path, one connection per session)
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    init_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'courierhub.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# courier HTTP: no retries / no sleeping in tests
# =========================================
@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        COURIER_HTTP_TIMEOUT=2.0,
        COURIER_MAX_RETRIES=1,
        COURIER_RETRY_BACKOFF=0.0,
        PATHAO_TOKEN_SAFETY_SECONDS=3600,
        RECONCILE_MAX_ATTEMPTS=3,
    )


# =========================================
# FastAPI / httpx AsyncClient bound to the test database
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    from courierhub.db.session import get_session
    from courierhub.main import app

    async def _test_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _test_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
