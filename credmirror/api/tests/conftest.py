"""
Fixtures for the credential API tests.

The app is built around the fake-database store from the root conftest and
driven in-process through httpx's ASGITransport (no lifespan, no PostgreSQL).
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from credmirror.api.app import create_app
from credmirror.runtime.registry import CredentialRegistry

MANAGEMENT_KEY = "s3cret-management-key"


@pytest.fixture
def registry(store):
    return CredentialRegistry(store)


@pytest_asyncio.fixture
async def client(store, registry):
    """Client against an app with the management key check disabled."""
    app = create_app(store=store, registry=registry, management_key="")
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def secured_client(store, registry):
    """Client against an app that requires MANAGEMENT_KEY."""
    app = create_app(store=store, registry=registry, management_key=MANAGEMENT_KEY)
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
