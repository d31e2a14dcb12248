"""
Audit logger - append-only lifecycle trail, the source of truth for
"what happened to this webhook".

Every write is checked against the lifecycle state machine. A failed write is
never silent: the transition is emitted on the fallback log channel
(hookgate.audit.fallback, structured JSON on stderr) and AuditWriteError is
raised so the caller can fail the request or keep going knowingly.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.audit_log import AuditLogEntry
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus, is_valid_transition
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.errors import AuditWriteError, InvalidAuditTransition
from hookgate.utils.logging import AUDIT_FALLBACK_LOGGER, get_correlation_id
from hookgate.utils.metrics import MetricName, increment_counter

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger(AUDIT_FALLBACK_LOGGER)

MAX_ERROR_MESSAGE_LENGTH = 2000


def _ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def log_fallback(
    webhook_id: uuid.UUID,
    status: str,
    error_message: Optional[str],
    reason: str,
) -> None:
    """Emit a transition that could not be persisted on the operational fallback channel."""
    fallback_logger.error(
        "AUDIT_FALLBACK webhook=%s status=%s reason=%s",
        webhook_id, status, reason,
        extra={
            "webhook_id": str(webhook_id),
            "status": status,
            "error_message": error_message,
            "correlation_id": get_correlation_id(),
        },
    )


async def _latest_entry(db: AsyncSession, webhook_id: uuid.UUID) -> Optional[AuditLogEntry]:
    result = await db.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.webhook_id == webhook_id)
        .order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def record_transition(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    status: str,
    error_message: Optional[str] = None,
) -> AuditLogEntry:
    """
    Append one lifecycle transition for a webhook.

    Raises InvalidAuditTransition if the state machine forbids it and
    AuditWriteError if the store rejects the write.
    """
    if status not in AuditStatus.ALL:
        raise ValueError(f"Unknown audit status: {status}")
    if error_message and len(error_message) > MAX_ERROR_MESSAGE_LENGTH:
        error_message = error_message[:MAX_ERROR_MESSAGE_LENGTH - 3] + "..."

    try:
        latest = await _latest_entry(db, webhook_id)
        current = latest.status if latest else None
        if not is_valid_transition(current, status):
            raise InvalidAuditTransition(webhook_id, current, status)

        occurred_at = datetime.now(timezone.utc)
        if latest is not None:
            # Instances may disagree on the clock; a trail never goes backwards
            occurred_at = max(occurred_at, _ensure_utc(latest.occurred_at))

        entry = AuditLogEntry(
            webhook_id=webhook_id,
            status=status,
            error_message=error_message,
            occurred_at=occurred_at,
        )
        db.add(entry)
        await db.flush()
    except SQLAlchemyError as e:
        log_fallback(webhook_id, status, error_message, str(e))
        await increment_counter(MetricName.AUDIT_FALLBACK)
        await send_alert(
            AlertType.AUDIT_WRITE_FAILED,
            f"Audit write failed for webhook {webhook_id} (status={status}): {str(e)[:200]}",
        )
        raise AuditWriteError(f"Audit write failed for {webhook_id} ({status}): {e}")

    logger.debug(
        "Audit %s -> %s", current, status,
        extra={"webhook_id": str(webhook_id), "status": status},
    )
    return entry


async def get_audit_trail(db: AsyncSession, webhook_id: uuid.UUID) -> list[AuditLogEntry]:
    """All entries for one webhook, oldest first."""
    result = await db.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.webhook_id == webhook_id)
        .order_by(AuditLogEntry.occurred_at, AuditLogEntry.id)
    )
    return list(result.scalars().all())


async def get_current_status(db: AsyncSession, webhook_id: uuid.UUID) -> Optional[str]:
    """Derived current state: the status of the latest entry."""
    latest = await _latest_entry(db, webhook_id)
    return latest.status if latest else None


async def list_entries(
    db: AsyncSession,
    provider: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[tuple[AuditLogEntry, str]]:
    """
    Query the trail by provider + time range and/or status.
    Returns (entry, provider) pairs, newest first.
    """
    stmt = (
        select(AuditLogEntry, WebhookEvent.provider)
        .join(WebhookEvent, WebhookEvent.id == AuditLogEntry.webhook_id)
    )
    if provider:
        stmt = stmt.where(WebhookEvent.provider == provider)
    if since:
        stmt = stmt.where(AuditLogEntry.occurred_at >= since)
    if until:
        stmt = stmt.where(AuditLogEntry.occurred_at < until)
    if status:
        stmt = stmt.where(AuditLogEntry.status == status)
    stmt = stmt.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc()).limit(limit)

    result = await db.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]
