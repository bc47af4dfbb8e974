"""
Session store - one mutable dialogue session per conversant.

Both backends hand out copies: a caller's changes become visible only once
written back with upsert() or update().
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from birthbot.constants.states import DEFAULT_LOCALE, ConversationState, Locale
from birthbot.db.helpers import commit_and_refresh
from birthbot.db.models import ConversationSessionRow

logger = logging.getLogger(__name__)


@dataclass
class ConversationSession:
    conversant_id: str
    state: ConversationState = ConversationState.INITIAL
    locale: Locale = DEFAULT_LOCALE
    fields: dict[str, str] = field(default_factory=dict)
    consent_given: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def copy(self) -> "ConversationSession":
        return replace(self, fields=dict(self.fields))


class SessionStore(Protocol):
    def get(self, conversant_id: str) -> ConversationSession | None: ...

    def get_or_create(self, conversant_id: str) -> ConversationSession: ...

    def update(self, conversant_id: str, **changes: Any) -> ConversationSession: ...

    def upsert(self, session: ConversationSession) -> None: ...

    def delete(self, conversant_id: str) -> bool: ...

    def list(self) -> list[ConversationSession]: ...


class InMemorySessionStore:
    """Process-local session store (the default backend)."""

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, ConversationSession] = {}

    def get(self, conversant_id: str) -> ConversationSession | None:
        with self._lock:
            session = self._sessions.get(conversant_id)
            return session.copy() if session else None

    def get_or_create(self, conversant_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(conversant_id)
            if session is None:
                session = ConversationSession(conversant_id=conversant_id)
                self._sessions[conversant_id] = session
                logger.info(f"Created session for {conversant_id}")
            return session.copy()

    def update(self, conversant_id: str, **changes: Any) -> ConversationSession:
        """Merge attribute changes into the stored session (created if missing)."""
        with self._lock:
            current = self._sessions.get(conversant_id) or ConversationSession(conversant_id)
            updated = replace(current, **changes)
            self._sessions[conversant_id] = updated.copy()
            return updated.copy()

    def upsert(self, session: ConversationSession) -> None:
        with self._lock:
            self._sessions[session.conversant_id] = session.copy()

    def delete(self, conversant_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(conversant_id, None) is not None

    def list(self) -> list[ConversationSession]:
        with self._lock:
            return [s.copy() for s in self._sessions.values()]


def _to_session(row: ConversationSessionRow) -> ConversationSession:
    return ConversationSession(
        conversant_id=row.conversant_id,
        state=ConversationState(row.state),
        locale=Locale(row.locale),
        fields=dict(row.fields or {}),
        consent_given=row.consent_given,
        created_at=row.created_at,
    )


class SqlSessionStore:
    """SQLAlchemy-backed session store (store_backend = "sql")."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, conversant_id: str) -> ConversationSession | None:
        with self._session_factory() as db:
            row = db.get(ConversationSessionRow, conversant_id)
            return _to_session(row) if row else None

    def get_or_create(self, conversant_id: str) -> ConversationSession:
        with self._session_factory() as db:
            row = db.get(ConversationSessionRow, conversant_id)
            if row is None:
                fresh = ConversationSession(conversant_id=conversant_id)
                row = self._new_row(fresh)
                db.add(row)
                commit_and_refresh(db, row)
                logger.info(f"Created session for {conversant_id}")
            return _to_session(row)

    def update(self, conversant_id: str, **changes: Any) -> ConversationSession:
        current = self.get(conversant_id) or ConversationSession(conversant_id)
        updated = replace(current, **changes)
        self.upsert(updated)
        return updated

    def upsert(self, session: ConversationSession) -> None:
        with self._session_factory() as db:
            row = db.get(ConversationSessionRow, session.conversant_id)
            if row is None:
                db.add(self._new_row(session))
            else:
                row.state = session.state.value
                row.locale = session.locale.value
                row.fields = dict(session.fields)
                row.consent_given = session.consent_given
            db.commit()

    def delete(self, conversant_id: str) -> bool:
        with self._session_factory() as db:
            row = db.get(ConversationSessionRow, conversant_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def list(self) -> list[ConversationSession]:
        with self._session_factory() as db:
            rows = db.execute(select(ConversationSessionRow)).scalars().all()
            return [_to_session(row) for row in rows]

    @staticmethod
    def _new_row(session: ConversationSession) -> ConversationSessionRow:
        return ConversationSessionRow(
            conversant_id=session.conversant_id,
            state=session.state.value,
            locale=session.locale.value,
            fields=dict(session.fields),
            consent_given=session.consent_given,
            created_at=session.created_at,
        )
