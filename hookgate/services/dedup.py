"""
Deduplication store - atomic (provider, external_event_id) reservation.

Uses the database's own conflict handling (INSERT ... ON CONFLICT DO NOTHING
on the composite primary key) so concurrent redeliveries hitting different
gateway instances cannot both be accepted. No application-level locks.

Records older than the retention window are expired: the next delivery with
the same key reclaims them with a conditional UPDATE, and the maintenance
worker purges them.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.dedup_record import DedupRecord
from hookgate.utils.errors import DedupStoreUnavailable

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


@dataclass(frozen=True)
class Reservation:
    accepted: bool
    webhook_id: uuid.UUID  # The new webhook when accepted, the existing owner otherwise


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise DedupStoreUnavailable(f"Unsupported dedup store dialect: {dialect}")


async def check_and_reserve(
    db: AsyncSession,
    provider: str,
    external_event_id: str,
    webhook_id: uuid.UUID,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Reserve (provider, external_event_id) for webhook_id.

    Returns Reservation(accepted=True, webhook_id) for the first delivery and
    Reservation(accepted=False, existing_owner) for a duplicate.
    Raises DedupStoreUnavailable on any store failure.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)

    try:
        insert = _insert_for(db)
        stmt = (
            insert(DedupRecord)
            .values(
                provider=provider,
                external_event_id=external_event_id,
                webhook_id=webhook_id,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["provider", "external_event_id"])
            .returning(DedupRecord.webhook_id)
        )
        result = await db.execute(stmt)
        if result.scalar_one_or_none() is not None:
            return Reservation(accepted=True, webhook_id=webhook_id)

        # Key exists - reclaim it only if the record fell out of the retention window
        reclaim = await db.execute(
            update(DedupRecord)
            .where(
                DedupRecord.provider == provider,
                DedupRecord.external_event_id == external_event_id,
                DedupRecord.created_at < cutoff,
            )
            .values(webhook_id=webhook_id, created_at=now)
            .returning(DedupRecord.webhook_id)
            .execution_options(synchronize_session=False)
        )
        if reclaim.scalar_one_or_none() is not None:
            logger.info(
                "Expired dedup record reclaimed: %s/%s",
                provider, external_event_id,
                extra={"provider": provider, "webhook_id": str(webhook_id)},
            )
            return Reservation(accepted=True, webhook_id=webhook_id)

        existing = await db.execute(
            select(DedupRecord.webhook_id).where(
                DedupRecord.provider == provider,
                DedupRecord.external_event_id == external_event_id,
            )
        )
        owner = existing.scalar_one_or_none()
        if owner is None:
            # Purged between our insert and read - the next redelivery will win the insert
            raise DedupStoreUnavailable(
                f"Dedup record for {provider}/{external_event_id} vanished during reservation"
            )
        logger.info(
            "Duplicate webhook: %s/%s already owned by %s",
            provider, external_event_id, str(owner)[:8],
            extra={"provider": provider, "webhook_id": str(webhook_id)},
        )
        return Reservation(accepted=False, webhook_id=owner)
    except SQLAlchemyError as e:
        logger.error("Dedup store failure for %s/%s: %s", provider, external_event_id, str(e))
        raise DedupStoreUnavailable(str(e))


async def purge_expired(
    db: AsyncSession,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> int:
    """Delete dedup records older than the retention window. Returns rows removed."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    result = await db.execute(
        delete(DedupRecord)
        .where(DedupRecord.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %d expired dedup records (retention=%dd)", removed, retention_days)
    return removed
