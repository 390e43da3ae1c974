# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI

from verification_core.api.main import create_app
from verification_core.config import Settings
from verification_core.deps import DependencyContainer, init_container, overrides
from verification_core.sessions.store import InMemorySessionStore

from .factories import FakeContract, FakeZkVerifier


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        verification_contract_id="verification.testnet",
        log_level="WARNING",
        log_format="text",
        listing_cache_ttl_seconds=60,
        admin_token="test-admin-token",
    )


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore(ttl_seconds=300)


@pytest.fixture
def contract() -> FakeContract:
    return FakeContract()


@pytest.fixture
def zk_verifier() -> FakeZkVerifier:
    return FakeZkVerifier()


@pytest.fixture
def container(settings, store, contract, zk_verifier) -> DependencyContainer:
    with overrides(store=store, contract=contract, zk_verifier=zk_verifier):
        return init_container(settings)


@pytest.fixture
def app(settings: Settings, container: DependencyContainer) -> FastAPI:
    return create_app(settings, container)


@pytest.fixture
async def client(app: FastAPI, container: DependencyContainer) -> AsyncIterator[httpx.AsyncClient]:
    """HTTPX client over ASGI, no real server."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await container.aclose()
