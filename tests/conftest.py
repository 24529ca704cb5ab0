"""
Pytest configuration and shared fixtures for the law firm booking tests.
"""

import os
import tempfile
from datetime import timedelta
from pathlib import Path

# The config module reads the environment at import time, so the test
# settings have to be in place before the app is imported.
_test_db_dir = tempfile.mkdtemp(prefix="lawfirm-tests-")
os.environ["TESTING"] = "True"
os.environ["FLASK_ENV"] = "testing"
os.environ["DATABASE_TEST_URL"] = (
    "sqlite:///" + str(Path(_test_db_dir) / "lawfirm_test.db")
)
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["JWT_EXPIRES_IN"] = "1h"
os.environ["ADMIN_GRANT_KEY"] = "test-grant-key"
os.environ["EMAIL_DEBUG_TRANSPORT"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["NOTIFICATION_TIMEZONE"] = "Asia/Shanghai"
for _name in ("EMAIL_HOST", "EMAIL_SERVICE", "RESEND_API_KEY"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from flask import Flask  # noqa: E402

from main import create_app  # noqa: E402
from app.extensions import db as database  # noqa: E402
from app.models import Base, Firm, FirmSlot, Service, ServiceSlot, User  # noqa: E402
from app.services import credential_broker  # noqa: E402
from app.services.notification_dispatcher import get_dispatcher  # noqa: E402
from app.utils.time_utils import utcnow  # noqa: E402


@pytest.fixture(scope="session")
def app():
    """Create and configure a test app instance."""
    app = create_app({"TESTING": True})

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    assert db_uri.startswith("sqlite"), f"Refusing to run tests against {db_uri}"

    yield app


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Allow-lists and recipients are read per call; start every test without them."""
    for name in ("ADMIN_EMAILS", "ADMIN_WECHAT_OPENIDS", "NOTIFICATION_EMAILS", "ADMIN_EMAIL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def db(app: Flask):
    """Fresh tables for every test."""
    with app.app_context():
        Base.metadata.drop_all(bind=database.engine)
        Base.metadata.create_all(bind=database.engine)

        yield database

        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def db_session(db):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mailbox(app):
    """Messages captured by the in-memory mail transport."""
    transport = get_dispatcher(app).email_service.transport
    transport.sent.clear()
    yield transport.sent
    transport.sent.clear()


@pytest.fixture
def future_time():
    return (utcnow() + timedelta(days=3)).replace(minute=0, second=0, microsecond=0)


@pytest.fixture
def sample_firm(db_session):
    firm = Firm(
        name="Golden Firmiana Partners",
        slug="golden-firmiana",
        city="Sydney",
        email="office@firmiana.example",
        contact_email="bookings@firmiana.example",
        practice_areas=["family", "property"],
        tags=["featured"],
        lawyers=[{"name": "Li Wei"}],
    )
    db_session.add(firm)
    db_session.commit()
    return firm


@pytest.fixture
def sample_service(db_session, sample_firm):
    service = Service(
        firm_id=sample_firm.id,
        title="Property Settlement",
        category="property",
        price=300,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def service_slots(db_session, sample_service, future_time):
    """Three consecutive hourly slots on the sample service."""
    times = [future_time + timedelta(hours=i) for i in range(3)]
    for t in times:
        db_session.add(ServiceSlot(service_id=sample_service.id, slot_at=t))
    db_session.commit()
    return times


@pytest.fixture
def firm_slots(db_session, sample_firm, future_time):
    times = [future_time + timedelta(hours=i) for i in range(2)]
    for t in times:
        db_session.add(FirmSlot(firm_id=sample_firm.id, slot_at=t))
    db_session.commit()
    return times


def _make_user(db_session, username, role="user", email=None, phone=None):
    user = User(
        username=username,
        password_hash=credential_broker.hash_password("password123"),
        display_name=username.title(),
        email=email or f"{username}@example.com",
        phone=phone,
        role=role,
        provider="password",
        profile_metadata={},
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def sample_user(db_session):
    return _make_user(db_session, "client")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "stranger")


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "boss", role="admin")


@pytest.fixture
def make_headers(app):
    def _headers(user):
        with app.test_request_context():
            token = credential_broker.issue_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def auth_headers(make_headers, sample_user):
    return make_headers(sample_user)


@pytest.fixture
def admin_headers(make_headers, admin_user):
    return make_headers(admin_user)


@pytest.fixture
def booking_payload(sample_firm, sample_service, future_time):
    return {
        "name": "Zhang San",
        "phone": "13800138000",
        "email": "zhang@example.com",
        "firm_id": str(sample_firm.id),
        "service_id": str(sample_service.id),
        "time": future_time.isoformat() + "Z",
        "remark": "Need advice on a settlement",
    }
