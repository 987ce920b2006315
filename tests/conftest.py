"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database so that threads can hit
it through separate connections, the way concurrent requests would.
"""

import base64
import json
import os
import time
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"physiocare-test-webhook-key-0001").decode()

# Must be set before the app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["DODO_PAYMENTS_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["DODO_PAYMENTS_API_KEY"] = ""

from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt as jose_jwt  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.config import JWT_ALGORITHM, SECRET_KEY  # noqa: E402
from app.database import Base, engine_options, get_db  # noqa: E402
from app.domain.billing.dodo_service import CheckoutGateway, get_checkout_gateway  # noqa: E402
from app.domain.scheduling.repository import SlotRepository  # noqa: E402
from app.main import app  # noqa: E402
from app.webhook_security import compute_signature  # noqa: E402

TOMORROW = date.today() + timedelta(days=1)
PATIENT_ID = 7
OTHER_PATIENT_ID = 8


@pytest.fixture
def engine(tmp_path):
    url = f"sqlite:///{tmp_path / 'physiocare_test.db'}"
    test_engine = create_engine(url, **engine_options(url))
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_slot(db):
    """Create a slot; defaults to tomorrow 10:00-11:00 with one seat"""
    counter = {"hour": 9}

    def _make(slot_date=None, start_time=None, end_time=None, capacity=1, is_available=True):
        if start_time is None:
            counter["hour"] += 1
            start_time = f"{counter['hour']:02d}:00"
            end_time = end_time or f"{counter['hour'] + 1:02d}:00"
        return SlotRepository.create_slot(
            db,
            date=slot_date or TOMORROW,
            start_time=start_time,
            end_time=end_time or "23:59",
            capacity=capacity,
            is_available=is_available,
            disabled=not is_available,
        )

    return _make


@pytest.fixture
def gateway_client():
    """Stand-in for the Dodo SDK client"""
    client = MagicMock()
    client.checkout_sessions.create = AsyncMock(
        return_value={"checkout_url": "https://checkout.test/session/cs_123", "session_id": "cs_123"}
    )
    client.checkout_sessions.retrieve = AsyncMock()
    client.payments.retrieve = AsyncMock()
    return client


@pytest.fixture
def gateway(gateway_client):
    return CheckoutGateway(client=gateway_client, product_id="pdt_adhoc_test", currency="INR")


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_checkout_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(sub: str, role: str = "PATIENT", patient_id=None, expires_in: int = 3600) -> str:
    claims = {"sub": sub, "role": role, "exp": int(time.time()) + expires_in}
    if patient_id is not None:
        claims["patient_id"] = patient_id
    return jose_jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


@pytest.fixture
def patient_headers():
    return {"Authorization": f"Bearer {make_token('user-7', patient_id=PATIENT_ID)}"}


@pytest.fixture
def other_patient_headers():
    return {"Authorization": f"Bearer {make_token('user-8', patient_id=OTHER_PATIENT_ID)}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin-1', role='ADMIN')}"}


def order_details_json(**fields) -> str:
    return json.dumps(fields)


def signed_webhook(event: dict, webhook_id: str = "msg_test_1", timestamp=None, secret: str = WEBHOOK_SECRET):
    """Body bytes and Standard Webhooks headers for an event"""
    body = json.dumps(event).encode("utf-8")
    ts = str(int(time.time()) if timestamp is None else timestamp)
    headers = {
        "webhook-id": webhook_id,
        "webhook-timestamp": ts,
        "webhook-signature": f"v1,{compute_signature(secret, webhook_id, ts, body)}",
        "content-type": "application/json",
    }
    return body, headers
