import os

# Settings, the engine and the JWT check are all resolved at import time.
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("OTP_QUEUE_BROKER_URL", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from advisory_api.core.base import Base
from advisory_api.core import config as app_config
from advisory_api.core.rate_limit import limiter
from advisory_api.core.security import hash_password

# Import models so they register with SQLAlchemy metadata.
from advisory_api.models.user import User  # noqa: F401
from advisory_api.models.otp import Otp  # noqa: F401
from advisory_api.models.user_session import UserSession  # noqa: F401

from advisory_api.core.database import get_db
from advisory_api.dependencies.services import build_auth_context
from advisory_api.services.otp_delivery import OtpDeliveryQueue
from advisory_api.tasks import otp_delivery as otp_delivery_task


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def db_session(db_engine, session_factory):
    # The in-memory DB persists across tests (StaticPool); reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _task_db(monkeypatch, session_factory):
    """The delivery task opens its own session; point it at the test database."""
    monkeypatch.setattr(otp_delivery_task, "session_factory", session_factory)


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, we must restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "OTP_MAX_ATTEMPTS",
        "OTP_TTL_MINUTES",
        "PASSWORD_MIN_LENGTH",
        "TWILIO_ENABLED",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_PHONE_NUMBER",
        "EMAIL_ENABLED",
        "EMAIL_PROVIDER",
        "FROM_EMAIL",
        "RESEND_API_KEY",
        "GOOGLE_CLIENT_ID",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)
        limiter.enabled = False
        limiter.reset()


@pytest.fixture()
def outbox(monkeypatch):
    """
    Capture OTP delivery jobs instead of running them. Each entry is the job payload
    ({otp_id, user_id, code, purpose, email|phone}).
    """
    jobs: list[dict] = []

    def _enqueue(self, job):  # noqa: ARG001
        jobs.append(dict(job))

    monkeypatch.setattr(OtpDeliveryQueue, "enqueue", _enqueue)
    return jobs


@pytest.fixture()
def ctx(db_session):
    """AuthContext wired against the test session."""
    return build_auth_context(db_session)


@pytest.fixture()
def make_user(db_session):
    def _make_user(**fields) -> User:
        password = fields.pop("password", None)
        if password is not None:
            fields["password_hash"] = hash_password(password)
        fields.setdefault("provider", "email")
        user = User(**fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def app(db_session):
    from advisory_api.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c

