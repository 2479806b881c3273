"""Shared pytest fixtures for test suite"""
import json
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time, so the test environment goes in first
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["ENABLE_RAZORPAY"] = "true"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["PAYMENT_CURRENCY"] = "INR"
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.api.payments import get_gateway
from app.core.signatures import compute_signature
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base, Book, Course, LiveClass, User
from app.services.gateway_client import PaymentGatewayClient

WEBHOOK_SECRET = "test_webhook_secret"
KEY_SECRET = "test_key_secret"
SESSION_ID = "test-session-id"
ADMIN_SESSION_ID = "test-admin-session-id"


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """Session factory on a file-backed SQLite database for multi-threaded tests"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def gateway_requests():
    """Requests seen by the fake Razorpay API"""
    return []


@pytest.fixture(scope="function")
def gateway(gateway_requests) -> PaymentGatewayClient:
    """Gateway client wired to an in-process fake of the Razorpay API"""

    def handler(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "id": "order_test123",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "notes": body["notes"],
                "status": "created",
                "created_at": 1700000000,
            })
        if request.method == "GET" and "/payments/" in path:
            return httpx.Response(200, json={
                "id": path.rsplit("/", 1)[-1],
                "entity": "payment",
                "order_id": "order_test123",
                "amount": 50000,
                "currency": "INR",
                "status": "captured",
            })
        if request.method == "GET" and "/orders/" in path:
            return httpx.Response(200, json={
                "id": path.rsplit("/", 1)[-1],
                "entity": "order",
                "amount": 50000,
                "currency": "INR",
                "status": "paid",
            })
        return httpx.Response(404, json={
            "error": {"code": "BAD_REQUEST_ERROR", "description": "The requested URL was not found on the server."}
        })

    client = PaymentGatewayClient(
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        base_url="https://api.razorpay.test/v1",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )
    yield client
    client.close()


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, gateway) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and fake gateway"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    try:
        with patch("app.main.init_db"):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    user = User(email="student@example.com", name="Test Student")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    user = User(email="admin@example.com", name="Admin", is_admin=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client carrying a bearer session for test_user"""
    mock_redis.setex(f"session:{SESSION_ID}", 2592000, str(test_user.id))
    client.headers.update({"Authorization": f"Bearer {SESSION_ID}"})
    return client


@pytest.fixture(scope="function")
def admin_client(client: TestClient, admin_user: User, mock_redis) -> TestClient:
    mock_redis.setex(f"session:{ADMIN_SESSION_ID}", 2592000, str(admin_user.id))
    client.headers.update({"Authorization": f"Bearer {ADMIN_SESSION_ID}"})
    return client


@pytest.fixture(scope="function")
def course(db_session: Session) -> Course:
    """Published course priced at 500.00"""
    course = Course(title="Calculus I", price=Decimal("500.00"), is_published=True)
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture(scope="function")
def book(db_session: Session) -> Book:
    """Published book priced at 99.99"""
    book = Book(title="Linear Algebra Notes", author="A. Author", price=Decimal("99.99"), is_published=True)
    db_session.add(book)
    db_session.commit()
    db_session.refresh(book)
    return book


@pytest.fixture(scope="function")
def live_class(db_session: Session) -> LiveClass:
    live_class = LiveClass(title="Exam Prep Live", price=Decimal("250.00"), is_published=True, max_students=50)
    db_session.add(live_class)
    db_session.commit()
    db_session.refresh(live_class)
    return live_class


@pytest.fixture(scope="function")
def draft_course(db_session: Session) -> Course:
    course = Course(title="Unreleased Course", price=Decimal("300.00"), is_published=False)
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture(scope="function")
def payment_event():
    """Build a Razorpay payment webhook event (with PII, as the gateway sends it)"""

    def build(
        event: str = "payment.captured",
        payment_id: str = "pay_123",
        order_id: str = "order_123",
        amount: int = 50000,
        currency: str = "INR",
        notes=None,
        **entity_fields
    ):
        entity = {
            "id": payment_id,
            "entity": "payment",
            "amount": amount,
            "currency": currency,
            "status": "captured" if event == "payment.captured" else "failed",
            "order_id": order_id,
            "method": "upi",
            "notes": notes if notes is not None else {},
            "card_id": "card_abc",
            "bank": "HDFC",
            "wallet": "paytm",
            "vpa": "student@okbank",
            "email": "student@example.com",
            "contact": "+919999999999",
        }
        entity.update(entity_fields)
        return {
            "entity": "event",
            "account_id": "acc_test",
            "event": event,
            "contains": ["payment"],
            "payload": {"payment": {"entity": entity}},
            "created_at": 1700000000,
        }

    return build


@pytest.fixture(scope="function")
def sign_webhook():
    """Serialize an event and sign the exact bytes with the webhook secret"""

    def sign(event) -> tuple:
        body = json.dumps(event).encode("utf-8")
        return body, compute_signature(body, WEBHOOK_SECRET)

    return sign
