import httpx
import pytest
from asgi_lifespan import LifespanManager

from app.main import app
from app.auth import deps as auth_deps
from app.core.config import settings
from app.services.container import build_services
from tests.fixtures import FakeClock, FakeProvider


@pytest.fixture(autouse=True)
def override_auth():
    app.dependency_overrides[auth_deps.get_current_user_id] = lambda: "test-user"
    yield
    app.dependency_overrides.pop(auth_deps.get_current_user_id, None)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
async def client(fake_clock, fake_provider):
    async with LifespanManager(app):
        app.state.scan = build_services(settings, clock=fake_clock, provider=fake_provider)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
