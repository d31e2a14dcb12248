"""
Webhook event - one row per inbound delivery, recorded before any validation.
Enables debugging, replay, and compliance auditing.

raw_payload is the exact request body and can never be reassigned.
validation_status moves once from UNVALIDATED to a terminal value. It only
describes the signature: a correctly signed body that fails to parse stays
VALID, and its VALIDATION_FAILED audit entry reads "[400 malformed] ...".
Signature rejections read "[401 unauthorized] ...".
"""
import json
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, LargeBinary, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import validates
from hookgate.database import Base
from hookgate.schemas.statuses import ValidationStatus


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(String(50), nullable=False, index=True)
    resource = Column(String(100), nullable=True)
    external_event_id = Column(String(255), nullable=True, index=True)
    topic = Column(String(255), nullable=True)
    raw_payload = Column(LargeBinary, nullable=False)
    payload_hash = Column(String(64), nullable=False, index=True)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    validation_status = Column(
        String(20), nullable=False,
        default=ValidationStatus.UNVALIDATED, server_default=ValidationStatus.UNVALIDATED,
    )
    duplicate_of = Column(UUID(as_uuid=True), ForeignKey("webhook_events.id"), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    # Processing attempts that actually ran and failed; deferrals leave it alone
    failed_attempts = Column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        Index("ix_webhook_events_provider_received_at", "provider", "received_at"),
    )

    @validates("raw_payload")
    def _freeze_raw_payload(self, key, value):
        if self.__dict__.get("raw_payload") is not None:
            raise ValueError("raw_payload is immutable once stored")
        if value is None:
            raise ValueError("raw_payload is required")
        return bytes(value)

    @validates("validation_status")
    def _check_validation_status(self, key, value):
        if value not in ValidationStatus.ALL:
            raise ValueError(f"Unknown validation status: {value}")
        current = self.__dict__.get("validation_status")
        if current not in (None, ValidationStatus.UNVALIDATED) and value != current:
            raise ValueError(f"validation_status cannot move from {current} to {value}")
        return value

    @property
    def payload(self) -> dict:
        """Decoded JSON body. Only meaningful once the event has been parsed."""
        return json.loads(self.raw_payload)

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.provider}/{self.topic} id={self.id}>"
