"""
Audit log model — append-only lifecycle trail for every webhook delivery.
The current state of a webhook is the entry with the latest (occurred_at, id).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, Integer, String, Text, DateTime, ForeignKey, Index, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from hookgate.database import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"

    # Monotonic id breaks ties between entries written in the same instant
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("webhook_events.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_audit_webhook_occurred", "webhook_id", "occurred_at"),
        Index("ix_audit_status_occurred", "status", "occurred_at"),
        Index("ix_audit_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.webhook_id} {self.status}>"


@event.listens_for(AuditLogEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only and cannot be updated")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only and cannot be deleted")
