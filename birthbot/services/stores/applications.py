"""
Application record store - immutable submitted applications.

Records are only ever created and read. Record ids are "BC" followed by the
submission time in epoch milliseconds, bumped by one when two records land in
the same millisecond so ids stay unique and increasing.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from types import MappingProxyType
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from birthbot.constants.event_types import EVENT_APPLICATION_SUBMITTED
from birthbot.constants.providers import PROVIDER_WHATSAPP
from birthbot.constants.states import RECORD_STATUS_SUBMITTED
from birthbot.db.models import ApplicationRecordRow

logger = logging.getLogger(__name__)

RECORD_ID_PREFIX = "BC"


@dataclass(frozen=True)
class ApplicationRecord:
    record_id: str
    conversant_id: str
    fields: Mapping[str, str]
    status: str = RECORD_STATUS_SUBMITTED
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    channel: str = PROVIDER_WHATSAPP

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "conversant_id": self.conversant_id,
            "fields": dict(self.fields),
            "status": self.status,
            "submitted_at": self.submitted_at.isoformat(),
            "channel": self.channel,
        }


class RecordIdGenerator:
    """Generates strictly increasing BC<epoch-ms> ids within a process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = Lock()
        self._last = 0

    def next_id(self) -> str:
        with self._lock:
            millis = int(self._clock() * 1000)
            if millis <= self._last:
                millis = self._last + 1
            self._last = millis
            return f"{RECORD_ID_PREFIX}{millis}"


class ApplicationStore(Protocol):
    def create(
        self, conversant_id: str, fields: Mapping[str, str], channel: str = PROVIDER_WHATSAPP
    ) -> str: ...

    def get(self, record_id: str) -> ApplicationRecord | None: ...

    def get_all(self) -> list[ApplicationRecord]: ...

    def list_for(self, conversant_id: str) -> list[ApplicationRecord]: ...


def _log_created(record: ApplicationRecord) -> None:
    logger.info(
        f"Application {record.record_id} submitted by {record.conversant_id} via {record.channel}",
        extra={
            "event_type": EVENT_APPLICATION_SUBMITTED,
            "record_id": record.record_id,
            "conversant_id": record.conversant_id,
        },
    )


class InMemoryApplicationStore:
    def __init__(self, id_generator: RecordIdGenerator | None = None):
        self._ids = id_generator or RecordIdGenerator()
        self._lock = Lock()
        self._records: dict[str, ApplicationRecord] = {}

    def create(
        self, conversant_id: str, fields: Mapping[str, str], channel: str = PROVIDER_WHATSAPP
    ) -> str:
        record = ApplicationRecord(
            record_id=self._ids.next_id(),
            conversant_id=conversant_id,
            fields=MappingProxyType(dict(fields)),
            channel=channel,
        )
        with self._lock:
            self._records[record.record_id] = record
        _log_created(record)
        return record.record_id

    def get(self, record_id: str) -> ApplicationRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def get_all(self) -> list[ApplicationRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.record_id)

    def list_for(self, conversant_id: str) -> list[ApplicationRecord]:
        return [r for r in self.get_all() if r.conversant_id == conversant_id]


def _to_record(row: ApplicationRecordRow) -> ApplicationRecord:
    return ApplicationRecord(
        record_id=row.record_id,
        conversant_id=row.conversant_id,
        fields=MappingProxyType(dict(row.fields or {})),
        status=row.status,
        submitted_at=row.submitted_at,
        channel=row.channel,
    )


class SqlApplicationStore:
    """SQLAlchemy-backed application record store (store_backend = "sql")."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        id_generator: RecordIdGenerator | None = None,
    ):
        self._session_factory = session_factory
        self._ids = id_generator or RecordIdGenerator()

    def create(
        self, conversant_id: str, fields: Mapping[str, str], channel: str = PROVIDER_WHATSAPP
    ) -> str:
        record = ApplicationRecord(
            record_id=self._ids.next_id(),
            conversant_id=conversant_id,
            fields=MappingProxyType(dict(fields)),
            channel=channel,
        )
        with self._session_factory() as db:
            db.add(
                ApplicationRecordRow(
                    record_id=record.record_id,
                    conversant_id=record.conversant_id,
                    channel=record.channel,
                    fields=dict(record.fields),
                    status=record.status,
                    submitted_at=record.submitted_at,
                )
            )
            db.commit()
        _log_created(record)
        return record.record_id

    def get(self, record_id: str) -> ApplicationRecord | None:
        with self._session_factory() as db:
            row = db.get(ApplicationRecordRow, record_id)
            return _to_record(row) if row else None

    def get_all(self) -> list[ApplicationRecord]:
        with self._session_factory() as db:
            stmt = select(ApplicationRecordRow).order_by(ApplicationRecordRow.record_id)
            return [_to_record(row) for row in db.execute(stmt).scalars().all()]

    def list_for(self, conversant_id: str) -> list[ApplicationRecord]:
        with self._session_factory() as db:
            stmt = (
                select(ApplicationRecordRow)
                .where(ApplicationRecordRow.conversant_id == conversant_id)
                .order_by(ApplicationRecordRow.record_id)
            )
            return [_to_record(row) for row in db.execute(stmt).scalars().all()]
