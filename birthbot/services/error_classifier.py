"""
Error classifier - maps a BotError to severity, retry eligibility and the
localized message shown to the conversant.

Severity (first match wins):
- DELIVERY/NETWORK with gateway status >= 500 -> critical (operator alert)
- AUTHENTICATION -> high
- DOMAIN_VERIFICATION -> medium
- everything else -> low
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from threading import Lock

from birthbot.constants.event_types import EVENT_ERROR_CLASSIFIED, EVENT_ERROR_HIGH_FREQUENCY
from birthbot.services.alerts import OperatorAlertSink
from birthbot.services.errors import BotError, ErrorKind
from birthbot.services.message_composer import MessageComposer
from birthbot.services.metrics import record_error_code

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}

# Never worth re-sending: the same request would fail the same way
_NON_RETRYABLE_KINDS = frozenset(
    {ErrorKind.AUTHENTICATION, ErrorKind.VALIDATION, ErrorKind.CONFIGURATION}
)


@dataclass(frozen=True)
class ErrorContext:
    conversant_id: str | None = None
    state: str | None = None
    action: str | None = None
    locale: str | None = None


@dataclass(frozen=True)
class ClassifiedError:
    code: str
    kind: ErrorKind
    severity: Severity
    retryable: bool
    user_message: str
    origin_status: int | None = None


class RetryCounter:
    """
    Per (conversant, code) counter bounding how often a failure is reported retryable.

    allow() grants `cap` times, then refuses once and clears the entry.
    Entries untouched for ttl_seconds are forgotten.
    """

    def __init__(
        self,
        cap: int = 3,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cap = cap
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[tuple[str, str], tuple[int, float]] = {}

    def allow(self, conversant_id: str, code: str) -> bool:
        key = (conversant_id, code)
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            count = self._entries.get(key, (0, now))[0]
            if count < self.cap:
                self._entries[key] = (count + 1, now)
                return True
            del self._entries[key]
            return False

    def count(self, conversant_id: str, code: str) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return self._entries.get((conversant_id, code), (0, 0.0))[0]

    def clear(self, conversant_id: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == conversant_id]:
                del self._entries[key]

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (_, ts) in self._entries.items() if now - ts > self.ttl_seconds]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class ErrorClassifier:
    def __init__(
        self,
        composer: MessageComposer,
        alert_sink: OperatorAlertSink | None = None,
        frequency_threshold: int = 50,
        retry_counter: RetryCounter | None = None,
    ):
        self.composer = composer
        self.alert_sink = alert_sink or OperatorAlertSink()
        self.frequency_threshold = frequency_threshold
        self.retry_counter = retry_counter or RetryCounter()

    @staticmethod
    def severity_for(error: BotError) -> Severity:
        if (
            error.kind in (ErrorKind.DELIVERY, ErrorKind.NETWORK)
            and error.status is not None
            and error.status >= 500
        ):
            return Severity.CRITICAL
        if error.kind == ErrorKind.AUTHENTICATION:
            return Severity.HIGH
        if error.kind == ErrorKind.DOMAIN_VERIFICATION:
            return Severity.MEDIUM
        return Severity.LOW

    def is_retryable(self, error: BotError, conversant_id: str | None) -> bool:
        if error.kind in _NON_RETRYABLE_KINDS:
            return False
        if error.status is None or error.status < 500:
            return False
        return self.retry_counter.allow(conversant_id or "", error.code)

    def classify(self, error: BotError, context: ErrorContext | None = None) -> ClassifiedError:
        """
        Classify a failure, log it, count it, and alert on critical severity.

        Never raises: a failing alert is logged by the sink.
        """
        context = context or ErrorContext()
        severity = self.severity_for(error)
        classified = ClassifiedError(
            code=error.code,
            kind=error.kind,
            severity=severity,
            retryable=self.is_retryable(error, context.conversant_id),
            user_message=self.composer.error_message(error.code, context.locale),
            origin_status=error.status,
        )

        logger.log(
            _LOG_LEVELS[severity],
            f"{error.kind.value} error {error.code}: {error.message}",
            extra={
                "event_type": EVENT_ERROR_CLASSIFIED,
                "code": error.code,
                "severity": severity.value,
                "retryable": classified.retryable,
                "conversant_id": context.conversant_id,
                "state": context.state,
                "action": context.action,
            },
        )

        count = record_error_code(error.code)
        if count > self.frequency_threshold:
            logger.error(
                f"High error frequency: {error.code} ({count} occurrences)",
                extra={"event_type": EVENT_ERROR_HIGH_FREQUENCY, "code": error.code, "count": count},
            )

        if severity == Severity.CRITICAL:
            self.alert_sink.notify(
                {
                    "code": error.code,
                    "message": error.message,
                    "severity": severity.value,
                    "status": error.status,
                    "conversant_id": context.conversant_id,
                    "state": context.state,
                    "action": context.action,
                    "timestamp": error.timestamp.isoformat(),
                }
            )

        return classified
