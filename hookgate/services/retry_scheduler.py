"""
Retry scheduler - exponential backoff with jitter, and the dead letter store.

Attempt numbers count processing attempts for one webhook, starting at 1.
scheduleRetry is called with the attempt that just failed; the task it creates
carries the next attempt number, so numbers strictly increase along a lineage.
Once max_attempts have failed the webhook is dead-lettered:
PROCESSING_FAILED -> DEAD_LETTERED, a dead_letters row, a metric and an alert.
"""
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.dead_letter import DeadLetter
from hookgate.models.retry_task import RetryTask
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus
from hookgate.services.audit import record_transition
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.metrics import MetricName, increment_counter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 30.0
    max_delay_seconds: float = 3600.0
    max_attempts: int = 5
    jitter: float = 0.2  # +/- fraction of the delay

    def __post_init__(self):
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
            max_attempts=settings.retry_max_attempts,
            jitter=settings.retry_jitter,
        )


def base_backoff_seconds(attempt_number: int, policy: RetryPolicy) -> float:
    """Delay before the attempt after `attempt_number`, without jitter."""
    return min(policy.base_delay_seconds * (2 ** attempt_number), policy.max_delay_seconds)


def compute_backoff(
    attempt_number: int,
    policy: RetryPolicy,
    rng: Optional[random.Random] = None,
) -> timedelta:
    """min(base * 2^attempt, max) with +/- jitter. Always positive."""
    delay = base_backoff_seconds(attempt_number, policy)
    if policy.jitter:
        spread = (rng or random).uniform(-policy.jitter, policy.jitter)
        delay = delay * (1 + spread)
    return timedelta(seconds=max(delay, 0.001))


async def _mark_failed_attempt(db: AsyncSession, webhook_id: uuid.UUID, attempt_number: int) -> None:
    event = await db.get(WebhookEvent, webhook_id)
    # Never lowered; a stale attempt may report after a later one
    if event is not None and attempt_number > (event.failed_attempts or 0):
        event.failed_attempts = attempt_number


async def schedule_retry(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    attempt_number: int,
    error: str,
    policy: RetryPolicy,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> Optional[RetryTask]:
    """
    Record a transient failure of `attempt_number`.
    Returns the new RetryTask, or None when the webhook was dead-lettered.
    """
    await _mark_failed_attempt(db, webhook_id, attempt_number)
    if attempt_number >= policy.max_attempts:
        await dead_letter(
            db, webhook_id, attempts=attempt_number, error=error, failure_kind="exhausted",
        )
        return None

    now = now or datetime.now(timezone.utc)
    task = RetryTask(
        webhook_id=webhook_id,
        attempt_number=attempt_number + 1,
        next_run_at=now + compute_backoff(attempt_number, policy, rng),
        last_error=error,
        created_at=now,
    )
    db.add(task)
    await record_transition(
        db, webhook_id, AuditStatus.RETRYING,
        f"Attempt {attempt_number}/{policy.max_attempts} failed: {error}",
    )
    await db.flush()
    await increment_counter(MetricName.RETRYING)

    logger.info(
        "Webhook %s retry %d/%d scheduled for %s",
        str(webhook_id)[:8], task.attempt_number, policy.max_attempts,
        task.next_run_at.isoformat(),
        extra={"webhook_id": str(webhook_id), "attempt": task.attempt_number},
    )
    return task


async def defer(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    attempt_number: int,
    reason: str,
    delay: timedelta,
    record: bool = True,
    now: Optional[datetime] = None,
) -> RetryTask:
    """
    Queue an attempt that has not run yet (processor saturated, stalled event).
    The attempt number is unchanged since nothing failed.
    """
    now = now or datetime.now(timezone.utc)
    task = RetryTask(
        webhook_id=webhook_id,
        attempt_number=attempt_number,
        next_run_at=now + delay,
        last_error=reason,
        created_at=now,
    )
    db.add(task)
    if record:
        await record_transition(db, webhook_id, AuditStatus.RETRYING, reason)
    await db.flush()
    logger.info(
        "Webhook %s attempt %d deferred: %s",
        str(webhook_id)[:8], attempt_number, reason,
        extra={"webhook_id": str(webhook_id), "attempt": attempt_number},
    )
    return task


async def dead_letter(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    attempts: int,
    error: str,
    failure_kind: str,
) -> DeadLetter:
    """Move a webhook to the dead letter store. Never silently drops it."""
    event = await db.get(WebhookEvent, webhook_id)

    await record_transition(db, webhook_id, AuditStatus.PROCESSING_FAILED, error)
    letter = DeadLetter(
        webhook_id=webhook_id,
        provider=event.provider if event else "unknown",
        topic=event.topic if event else None,
        attempts=attempts,
        last_error=error,
        failure_kind=failure_kind,
        correlation_id=event.correlation_id if event else None,
    )
    db.add(letter)
    await record_transition(
        db, webhook_id, AuditStatus.DEAD_LETTERED,
        f"{failure_kind} after {attempts} attempt(s)",
    )
    await db.flush()
    await increment_counter(MetricName.DEAD_LETTERED)

    logger.error(
        "Webhook %s dead-lettered (%s, %d attempts): %s",
        str(webhook_id)[:8], failure_kind, attempts, error[:200],
        extra={"webhook_id": str(webhook_id), "attempt": attempts},
    )
    await send_alert(
        AlertType.DEAD_LETTERED,
        f"Webhook {webhook_id} ({letter.provider}/{letter.topic}) dead-lettered "
        f"after {attempts} attempt(s): {error[:200]}",
        correlation_id=letter.correlation_id,
        extra={"failure_kind": failure_kind},
    )
    return letter


async def dequeue_due(
    db: AsyncSession,
    now: Optional[datetime] = None,
    limit: int = 50,
) -> list[RetryTask]:
    """
    Claim and delete retry tasks whose next_run_at has passed, oldest first.
    SKIP LOCKED lets several gateway instances poll the same table.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(RetryTask)
        .where(RetryTask.next_run_at <= now)
        .order_by(RetryTask.next_run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    tasks = list(result.scalars().all())
    for task in tasks:
        await db.delete(task)
    await db.flush()
    return tasks
