"""
Deduplication record - (provider, external_event_id) -> the webhook that owns it.
The composite primary key is the unique constraint every reservation races on.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from hookgate.database import Base


class DedupRecord(Base):
    __tablename__ = "dedup_records"

    provider: Mapped[str] = mapped_column(String(50), primary_key=True)
    external_event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("webhook_events.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc), index=True,
    )

    def __repr__(self) -> str:
        return f"<DedupRecord {self.provider}/{self.external_event_id} -> {self.webhook_id}>"
