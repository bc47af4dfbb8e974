import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test_verify_token")
os.environ.setdefault("WHATSAPP_ACCESS_TOKEN", "test_token")
os.environ.setdefault("WHATSAPP_PHONE_NUMBER_ID", "test_id")
os.environ.setdefault("WHATSAPP_DRY_RUN", "true")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.pop("ADMIN_API_KEY", None)
os.environ.pop("OPERATOR_ALERT_WEBHOOK_URL", None)

from birthbot.db.base import Base  # noqa: E402
from birthbot.main import app  # noqa: E402
from birthbot.services.alerts import OperatorAlertSink  # noqa: E402
from birthbot.services.conversation import ConversationEngine  # noqa: E402
from birthbot.services.dedup import InboundDeduplicator  # noqa: E402
from birthbot.services.error_classifier import ErrorClassifier, RetryCounter  # noqa: E402
from birthbot.services.message_composer import get_composer, reset_cache  # noqa: E402
from birthbot.services.metrics import reset_metrics  # noqa: E402
from birthbot.services.otp import OtpService  # noqa: E402
from birthbot.services.runtime import Runtime, reset_runtime, set_runtime  # noqa: E402
from birthbot.services.stores.applications import InMemoryApplicationStore  # noqa: E402
from birthbot.services.stores.sessions import InMemorySessionStore  # noqa: E402
from tests.helpers.engine import RecordingDelivery  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_globals():
    reset_metrics()
    reset_cache()
    reset_runtime()
    yield
    reset_runtime()
    reset_cache()


@pytest.fixture
def composer():
    return get_composer()


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def alert_sink():
    return OperatorAlertSink()


@pytest.fixture
def classifier(composer, alert_sink):
    return ErrorClassifier(composer, alert_sink=alert_sink, retry_counter=RetryCounter(cap=3))


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def applications():
    return InMemoryApplicationStore()


@pytest.fixture
def otp_service():
    return OtpService(ttl_seconds=300)


@pytest.fixture
def engine(sessions, applications, delivery, classifier, composer, otp_service):
    return ConversationEngine(
        sessions=sessions,
        applications=applications,
        delivery=delivery,
        classifier=classifier,
        composer=composer,
        otp=otp_service,
    )


@pytest.fixture
def otp_engine(sessions, applications, delivery, classifier, composer, otp_service):
    return ConversationEngine(
        sessions=sessions,
        applications=applications,
        delivery=delivery,
        classifier=classifier,
        composer=composer,
        otp=otp_service,
        otp_enabled=True,
    )


@pytest.fixture
def runtime(engine, sessions, applications, delivery, alert_sink):
    """Install test wiring as the process runtime used by the HTTP layer."""
    rt = Runtime(
        engine=engine,
        sessions=sessions,
        applications=applications,
        delivery=delivery,
        dedup=InboundDeduplicator(window_seconds=86400),
        alerts=alert_sink,
    )
    set_runtime(rt)
    return rt


@pytest.fixture
def client(runtime):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory SQLite database per test."""
    sql_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=sql_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=sql_engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=sql_engine)
        sql_engine.dispose()
