"""Pytest configuration for CDBridge tests."""

import pytest
import pytest_asyncio

from cdbridge.config import Settings
from cdbridge.setup import InstallationResolver
from cdbridge.storage import DatabaseManager


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment, backed by a temporary database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cdbridge.db'}",
        github_webhook_secret="gh-secret",
        gitlab_webhook_token="gl-token",
        ddash_endpoint="https://default.example.test",
        ddash_auth_token="default-token",
        ddash_webhook_secret="default-secret",
        default_environment="staging",
    )


@pytest_asyncio.fixture
async def db(settings):
    manager = DatabaseManager(database_url=settings.database_url)
    await manager.init_db()
    yield manager
    await manager.close()


@pytest.fixture
def resolver(db, settings):
    return InstallationResolver(db, settings)
