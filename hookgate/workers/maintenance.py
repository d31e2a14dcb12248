"""
Maintenance worker — stalled-event recovery and dedupe retention.
Runs every MAINTENANCE_INTERVAL_SECONDS.

Phases per cycle:
1. Sweep stalled events: accepted, latest status RECEIVED or RETRYING, no
   pending retry task, and quiet for longer than the stall threshold. These
   were acknowledged but lost their in-memory job (crash, restart, shutdown
   timeout). They are requeued at their next un-run attempt number.
2. Purge dedupe records older than the retention window.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import exists, select

from hookgate.models.audit_log import AuditLogEntry
from hookgate.models.retry_task import RetryTask
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus, ValidationStatus
from hookgate.services.dedup import purge_expired
from hookgate.services.retry_scheduler import RetryPolicy, dead_letter, defer
from hookgate.utils.redis_client import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "maintenance"
SWEEP_BATCH_SIZE = 100


async def run_maintenance(
    policy: RetryPolicy,
    session_factory: Optional[Callable] = None,
    interval: float = 300.0,
    stall_threshold_seconds: float = 900.0,
    dedup_retention_days: int = 30,
):
    """Main loop — recover stalled events, then purge expired dedupe records."""
    if session_factory is None:
        from hookgate.database import async_session_factory
        session_factory = async_session_factory

    logger.info("Maintenance worker started (poll every %.0fs)", interval)

    while True:
        try:
            recovered = await sweep_stalled_events(
                session_factory, policy, stall_threshold_seconds,
            )
            purged = await purge_dedup_records(session_factory, dedup_retention_days)
            if recovered or purged:
                logger.info(
                    "Maintenance cycle: %d stalled events rescheduled, %d dedupe records purged",
                    recovered, purged,
                )
        except Exception as e:
            logger.error("Maintenance worker error: %s", str(e), exc_info=True)

        await write_heartbeat(WORKER_NAME, ttl_seconds=max(600, int(interval * 2)))
        await asyncio.sleep(interval)


def _latest_audit_column(column):
    return (
        select(column)
        .where(AuditLogEntry.webhook_id == WebhookEvent.id)
        .order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
        .limit(1)
        .correlate(WebhookEvent)
        .scalar_subquery()
    )


async def sweep_stalled_events(
    session_factory: Callable,
    policy: RetryPolicy,
    stall_threshold_seconds: float = 900.0,
    now: Optional[datetime] = None,
) -> int:
    """Reschedule acknowledged events that have no outcome and nothing queued."""
    now = now or datetime.now(timezone.utc)
    received_cutoff = now - timedelta(seconds=stall_threshold_seconds)
    # A RETRYING event may legitimately wait out its whole backoff before it runs
    retrying_cutoff = received_cutoff - timedelta(
        seconds=policy.max_delay_seconds * (1 + policy.jitter)
    )

    latest_status = _latest_audit_column(AuditLogEntry.status)
    latest_at = _latest_audit_column(AuditLogEntry.occurred_at)
    no_pending_task = ~exists().where(RetryTask.webhook_id == WebhookEvent.id)

    recovered = 0
    async with session_factory() as db:
        result = await db.execute(
            select(
                WebhookEvent.id, WebhookEvent.failed_attempts, latest_status.label("latest_status"),
            )
            .where(
                WebhookEvent.validation_status == ValidationStatus.VALID,
                WebhookEvent.duplicate_of.is_(None),
                no_pending_task,
                (
                    (latest_status == AuditStatus.RECEIVED) & (latest_at < received_cutoff)
                ) | (
                    (latest_status == AuditStatus.RETRYING) & (latest_at < retrying_cutoff)
                ),
            )
            .limit(SWEEP_BATCH_SIZE)
        )
        for webhook_id, failed_attempts, status in result.all():
            # The lost job never ran, so it is requeued as the next un-run attempt
            next_attempt = (failed_attempts or 0) + 1
            reason = f"stalled: no outcome recorded after {status}"
            logger.warning(
                "Stalled webhook %s (latest=%s) - requeueing attempt %d",
                str(webhook_id)[:8], status, next_attempt,
                extra={"webhook_id": str(webhook_id), "status": status, "attempt": next_attempt},
            )
            if next_attempt > policy.max_attempts:
                # Only reachable after max_attempts was lowered
                await dead_letter(
                    db, webhook_id, attempts=failed_attempts, error=reason,
                    failure_kind="exhausted",
                )
            else:
                await defer(db, webhook_id, next_attempt, reason, timedelta(0), now=now)
            recovered += 1
        await db.commit()

    return recovered


async def purge_dedup_records(
    session_factory: Callable,
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    async with session_factory() as db:
        removed = await purge_expired(db, retention_days, now=now)
        await db.commit()
    return removed
