"""
Process-wide service wiring built from settings.

The HTTP layer gets the engine, stores and deduplicator from get_runtime();
tests call reset_runtime() (or set_runtime() with their own wiring).
"""

import logging
from dataclasses import dataclass

from birthbot.core.config import settings
from birthbot.services.alerts import OperatorAlertSink
from birthbot.services.conversation import ConversationEngine
from birthbot.services.dedup import InboundDeduplicator
from birthbot.services.delivery import DeliveryClient
from birthbot.services.error_classifier import ErrorClassifier, RetryCounter
from birthbot.services.errors import BotError
from birthbot.services.message_composer import get_composer
from birthbot.services.otp import OtpService
from birthbot.services.stores.applications import (
    ApplicationStore,
    InMemoryApplicationStore,
    SqlApplicationStore,
)
from birthbot.services.stores.sessions import InMemorySessionStore, SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)

STORE_BACKEND_MEMORY = "memory"
STORE_BACKEND_SQL = "sql"


@dataclass
class Runtime:
    engine: ConversationEngine
    sessions: SessionStore
    applications: ApplicationStore
    delivery: DeliveryClient
    dedup: InboundDeduplicator
    alerts: OperatorAlertSink


def build_stores(backend: str) -> tuple[SessionStore, ApplicationStore]:
    if backend == STORE_BACKEND_MEMORY:
        return InMemorySessionStore(), InMemoryApplicationStore()
    if backend == STORE_BACKEND_SQL:
        from birthbot.db.base import Base
        from birthbot.db.session import SessionLocal, engine

        Base.metadata.create_all(bind=engine)
        return SqlSessionStore(SessionLocal), SqlApplicationStore(SessionLocal)
    raise BotError.configuration(f"Unknown store backend: {backend}")


def build_runtime() -> Runtime:
    sessions, applications = build_stores(settings.store_backend)
    delivery = DeliveryClient.from_settings()
    alerts = OperatorAlertSink(settings.operator_alert_webhook_url)
    composer = get_composer()
    classifier = ErrorClassifier(
        composer,
        alert_sink=alerts,
        frequency_threshold=settings.error_frequency_threshold,
        retry_counter=RetryCounter(
            cap=settings.user_retry_cap,
            ttl_seconds=settings.retry_counter_ttl_seconds,
        ),
    )
    engine = ConversationEngine(
        sessions=sessions,
        applications=applications,
        delivery=delivery,
        classifier=classifier,
        composer=composer,
        otp=OtpService(ttl_seconds=settings.otp_ttl_seconds, max_attempts=settings.otp_max_attempts),
        otp_enabled=settings.feature_otp_verification_enabled,
    )
    logger.info(
        f"Runtime built (store={settings.store_backend}, dry_run={settings.whatsapp_dry_run}, "
        f"otp={settings.feature_otp_verification_enabled})"
    )
    return Runtime(
        engine=engine,
        sessions=sessions,
        applications=applications,
        delivery=delivery,
        dedup=InboundDeduplicator(settings.dedup_window_seconds),
        alerts=alerts,
    )


_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    global _runtime
    _runtime = runtime


def reset_runtime() -> None:
    """Drop the global runtime (useful for testing)."""
    set_runtime(None)
