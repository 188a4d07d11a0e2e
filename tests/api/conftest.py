# tests/api/conftest.py
import httpx
import pytest
import pytest_asyncio

from app.backend.main import app


@pytest_asyncio.fixture
async def api_client():
    """
    Client talking to the app in-process. The lifespan does not run, so every
    test overrides the service dependencies it reaches.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test/api/v1") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def override():
    """override(dependency, instance) makes every request receive instance."""
    def _override(dependency, instance):
        app.dependency_overrides[dependency] = lambda: instance
        return instance
    return _override
