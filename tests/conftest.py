import pytest
from httpx import ASGITransport, AsyncClient

from afyalink.api.main import app
from afyalink.services.metrics import metrics
from afyalink.services.rate_limiter import rate_limiter


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def _clear_rate_limiter():
    """Reset the rate limiter between every test."""
    rate_limiter.clear()
    yield
    rate_limiter.clear()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
