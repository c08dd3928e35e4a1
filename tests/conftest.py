import httpx
import pytest

from loyalty.accrual import AccrualClient
from loyalty.config import Settings
from loyalty.main import create_app
from loyalty.storage import MemoryStorage

ACCRUAL_URL = "http://accrual.test"


def make_accrual_client(handler) -> AccrualClient:
    return AccrualClient(ACCRUAL_URL, timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def settings():
    return Settings(poll_interval=0.01, accrual_timeout=1.0, jwt_secret="test-secret")


@pytest.fixture
def app(storage, settings):
    client = make_accrual_client(lambda request: httpx.Response(204))
    return create_app(settings, storage=storage, accrual_client=client, start_worker=False)


@pytest.fixture
async def api(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def register(api):
    """Register a user through the API and return headers that authenticate as them."""
    async def _register(login: str, password: str = "password123") -> dict:
        r = await api.post("/api/user/register", json={"login": login, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": r.headers["Authorization"]}
    return _register
