"""Shared pytest fixtures for provider and storage tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import LLMSettings, ProviderSettings
from app.db.base import Base
from app.db.models import core as _models  # noqa: F401
from app.providers.registry import ProviderRegistry


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


class _CountingTransactions:
    """``Database.transaction`` stand-in over the shared test session."""

    def __init__(self, session: _AsyncSessionWrapper) -> None:
        self.session = session
        self.open = 0
        self.commits = 0

    @asynccontextmanager
    async def __call__(self):
        self.open += 1
        try:
            yield self.session
            await self.session.commit()
            self.commits += 1
        except Exception:
            await self.session.rollback()
            raise
        finally:
            self.open -= 1


class FakeHttpClient:
    """Stands in for ``httpx.AsyncClient.request`` and records every call."""

    def __init__(self) -> None:
        self.payload: Any = {}
        self.status_code = 200
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    async def request(self, method, url, json=None, headers=None, params=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "json": json,
                "headers": headers,
                "params": params,
                "timeout": timeout,
            }
        )
        request = httpx.Request(method, url)
        if self.error is not None:
            raise self.error
        if isinstance(self.payload, str):
            return httpx.Response(self.status_code, text=self.payload, request=request)
        return httpx.Response(self.status_code, json=self.payload, request=request)


@pytest.fixture
def http_client() -> FakeHttpClient:
    return FakeHttpClient()


@pytest.fixture
def llm_settings() -> LLMSettings:
    return LLMSettings(
        openai=ProviderSettings(api_key="sk-openai-test", base_url="https://openai.test/v1"),
        anthropic=ProviderSettings(api_key="sk-ant-test", base_url="https://anthropic.test"),
        google=ProviderSettings(api_key="AIza-test", base_url="https://google.test"),
        stability=ProviderSettings(api_key="sk-stability-test", base_url="https://stability.test"),
    )


@pytest.fixture
def registry(llm_settings, http_client) -> ProviderRegistry:
    return ProviderRegistry(llm_settings, http_client=http_client)


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def transaction(session) -> _CountingTransactions:
    return _CountingTransactions(session)
