"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
settings with a throwaway Fernet key, in-memory stores, a VirtualScheduler
and a fake backend served through httpx.MockTransport.
"""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from lms_companion.config import Settings
from lms_companion.core import keys
from lms_companion.core.context import build_context
from lms_companion.core.identity import IdentityRecord
from lms_companion.core.scheduler import VirtualScheduler
from lms_companion.core.storage import SessionStores
from lms_companion.core.vault import CredentialVault

BACKEND_URL = "http://lms.test/"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (fake backend, virtual time)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "smoke" in path:
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Fake backend
# =============================================================================


class FakeBackend:
    """Route table answering httpx requests, recording every call."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Any = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                if json is None:
                    return httpx.Response(status)
                return httpx.Response(status, json=json)

        self.routes[(method.upper(), path)] = handler

    def fail(self, method: str, path: str, exc_type: type[httpx.RequestError] = httpx.ConnectError) -> None:
        """Make ``path`` raise a transport error."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc_type("backend unreachable", request=request)

        self.routes[(method.upper(), path)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"detail": "not found"})
        return handler(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def fernet_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def settings(tmp_path, fernet_key) -> Settings:
    return Settings(
        _env_file=None,
        backend_url=BACKEND_URL,
        encryption_key=fernet_key,
        state_dir=tmp_path,
    )


@pytest.fixture
def vault(settings) -> CredentialVault:
    return CredentialVault.from_settings(settings)


@pytest.fixture
def stores() -> SessionStores:
    return SessionStores()


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def identity() -> IdentityRecord:
    return IdentityRecord(
        student_id="S-100",
        email="ada@example.com",
        name="Ada Lovelace",
        picture="https://example.com/ada.png",
        course_id="C-7",
        batch_id="B-3",
    )


@pytest_asyncio.fixture
async def context(settings, stores, scheduler, backend):
    """AppContext wired to in-memory stores, virtual time and the fake backend."""
    ctx = build_context(settings, stores=stores, scheduler=scheduler, transport=backend.transport)
    yield ctx
    await ctx.aclose()


@pytest.fixture
def authenticated(context, identity):
    """Context whose stores hold a fresh logged-in session."""
    identity.write(context.stores, context.vault)
    now = str(context.scheduler.now_ms())
    context.stores.durable.set_item(keys.DURABLE_ACCESS_TOKEN, "tok-123")
    context.stores.session.set_item(keys.SESSION_ACCESS_TOKEN, "tok-123")
    context.stores.durable.set_item(keys.DURABLE_TIMESTAMP, now)
    context.stores.durable.set_item(keys.DURABLE_LAST_ACTIVITY, now)
    return context
