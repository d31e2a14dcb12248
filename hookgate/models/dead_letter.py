"""
Dead letter store - webhooks whose processing failed permanently or exhausted retries.
Rows are kept for manual inspection; nothing here is ever retried automatically.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from hookgate.database import Base


class DeadLetter(Base):
    __tablename__ = "dead_letters"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    webhook_id = Column(
        UUID(as_uuid=True), ForeignKey("webhook_events.id"), nullable=False, unique=True
    )
    provider = Column(String(50), nullable=False, index=True)
    topic = Column(String(255), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    failure_kind = Column(String(20), nullable=False)  # exhausted, permanent
    correlation_id = Column(String(64), nullable=True)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
