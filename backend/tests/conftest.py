"""Test fixtures for offline_mirror tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient

from offline_mirror.api.routes import get_settings, get_task_service, get_transport
from offline_mirror.config import Settings
from offline_mirror.main import app
from offline_mirror.models.schemas import MirrorConfig, RegistryCredentials
from offline_mirror.services.tasks import MirrorTaskService

from .support.transport import FakeTransport


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    """Undo any logging configuration done by a CLI test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def credentials() -> RegistryCredentials:
    return RegistryCredentials.from_pair("mirror-bot:s3cr3t-token")


@pytest.fixture
def config(credentials: RegistryCredentials) -> MirrorConfig:
    return MirrorConfig(
        dest_registry="docker.io", dest_namespace="acme", credentials=credentials
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        dest_registry="docker.io",
        dest_namespace="acme",
        docker_user="mirror-bot",
        docker_pat="s3cr3t-token",
    )


@pytest_asyncio.fixture
async def client(
    settings: Settings, transport: FakeTransport
) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` talking to the app with fakes wired in."""
    service = MirrorTaskService()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_transport] = lambda: transport
    app.dependency_overrides[get_task_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()
