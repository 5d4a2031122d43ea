"""Pytest bootstrap for project imports and shared fixtures."""

from datetime import datetime, timedelta, UTC
from pathlib import Path
import os
import sys

# Ensure project root is on sys.path so `import mentorlink` works
PROJECT_ROOT = Path(__file__).resolve().parents[1]
project_root_str = str(PROJECT_ROOT)
if project_root_str not in sys.path:
    sys.path.insert(0, project_root_str)

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FALLBACK_STORE_URL", "sqlite://")
os.environ.setdefault("PAYMENT_KEY_SECRET", "test_gateway_secret")

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mentorlink.api.payment import expected_signature
from mentorlink.config import settings
from mentorlink.database import Base, get_db
from mentorlink.main import app
from mentorlink.services.clients import ServiceClients
from mentorlink.services.fallback_store import FallbackStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FlakyTransport(httpx.AsyncBaseTransport):
    """Forwards to the app, except for paths marked as failing or garbled."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.failing = set()
        # path fragment -> body served with a 200 instead of the real answer
        self.garbled = {}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if any(fragment in request.url.path for fragment in self.failing):
            raise httpx.ConnectError("service unreachable", request=request)
        for fragment, body in self.garbled.items():
            if fragment in request.url.path:
                return httpx.Response(200, content=body, request=request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def api_db(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)

    def _override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield db_engine
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def client(api_db):
    return TestClient(app)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 10, 0, tzinfo=UTC))


@pytest.fixture
def store():
    fallback = FallbackStore("sqlite://")
    try:
        yield fallback
    finally:
        fallback.dispose()


@pytest.fixture
def transport(api_db):
    return FlakyTransport(httpx.ASGITransport(app=app))


@pytest_asyncio.fixture
async def services(transport):
    clients = ServiceClients.connect("http://testserver", transport=transport)
    try:
        yield clients
    finally:
        await clients.aclose()


def _create_request(client: TestClient, *, student_id: str = "stu-1", alumni_id: str = "alu-1", title: str = "Career advice") -> dict:
    response = client.post(
        "/api/mentorship/requests",
        json={
            "student_id": student_id,
            "alumni_id": alumni_id,
            "title": title,
            "description": "Guidance on moving into backend engineering",
            "category": "career_guidance",
            "skills_needed": ["python", "system design"],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _accept_request(client: TestClient, request_id: str) -> dict:
    response = client.put(f"/api/mentorship/requests/{request_id}/accept")
    assert response.status_code == 200, response.text
    return response.json()


def _pay_for_request(client: TestClient, request: dict, *, payment_id: str = "pay_001", order_id: str = "order_001") -> dict:
    response = client.post(
        "/api/payment/mentorship/verify",
        data={
            "order_id": order_id,
            "payment_id": payment_id,
            "signature": expected_signature(order_id, payment_id, settings.PAYMENT_KEY_SECRET),
            "student_id": request["student_id"],
            "alumni_id": request["alumni_id"],
            "request_id": request["id"],
            "amount": "300",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def create_request(client):
    return lambda **kwargs: _create_request(client, **kwargs)


@pytest.fixture
def accept_request(client):
    return lambda request_id: _accept_request(client, request_id)


@pytest.fixture
def pay_for_request(client):
    return lambda request, **kwargs: _pay_for_request(client, request, **kwargs)


@pytest.fixture
def paid_accepted_request(create_request, accept_request, pay_for_request):
    request = create_request()
    accept_request(request["id"])
    pay_for_request(request)
    return request
