import os
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

# ireporter.main builds a default app at import time, which reads SECRET_KEY
os.environ.setdefault("SECRET_KEY", "import-time-secret")

from ireporter.core.config import Settings
from ireporter.core.security import Caller, create_user_token
from ireporter.main import create_app
from ireporter.models.common import utcnow
from ireporter.models.incident import Incident
from ireporter.services import users as users_service


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_URL=None,
        SECRET_KEY="test-secret",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    await app.state.db.init()
    await app.state.db.create_all()
    yield app
    await app.state.db.close()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def service(app):
    return app.state.incident_service


@pytest.fixture
def backdate(app):
    """Move an incident's timestamps into the past."""

    async def _backdate(incident_id, hours=1):
        earlier = utcnow() - timedelta(hours=hours)
        async with app.state.db.transaction() as session:
            await session.execute(
                update(Incident).where(Incident.id == incident_id).values(created_at=earlier, updated_at=earlier)
            )

    return _backdate


@pytest.fixture
def make_user(app):
    async def _make_user(email, name, role="user", password="password123"):
        async with app.state.db.session() as session:
            return await users_service.create_user(session, email, password, name, role)

    return _make_user


@pytest.fixture
async def citizen(make_user):
    return await make_user("jane@example.com", "Jane Citizen")


@pytest.fixture
async def other_citizen(make_user):
    return await make_user("john@example.com", "John Neighbour")


@pytest.fixture
async def admin(make_user):
    return await make_user("admin@example.com", "Ada Admin", role="admin")


def _headers(user, settings):
    return {"Authorization": f"Bearer {create_user_token(user, settings)}"}


@pytest.fixture
def citizen_headers(citizen, settings):
    return _headers(citizen, settings)


@pytest.fixture
def other_headers(other_citizen, settings):
    return _headers(other_citizen, settings)


@pytest.fixture
def admin_headers(admin, settings):
    return _headers(admin, settings)


@pytest.fixture
def as_caller():
    def _as_caller(user):
        return Caller(id=user.id, role=user.role, email=user.email)

    return _as_caller


@pytest.fixture
def report_body():
    return {
        "type": "red-flag",
        "title": "Bribery at office X",
        "description": "Clerk asked for cash before processing a permit.",
        "location": {"lat": 40.7128, "lng": -74.0060},
    }
