from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from birthbot.db.base import Base


class ConversationSessionRow(Base):
    __tablename__ = "conversation_sessions"

    conversant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(32), default="INITIAL")
    locale: Mapped[str] = mapped_column(String(8), default="en")
    fields: Mapped[dict] = mapped_column(JSON, default=dict)
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ApplicationRecordRow(Base):
    __tablename__ = "application_records"

    record_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    conversant_id: Mapped[str] = mapped_column(String(64), index=True)
    channel: Mapped[str] = mapped_column(String(20), default="whatsapp")
    fields: Mapped[dict] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(32), default="submitted")
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
