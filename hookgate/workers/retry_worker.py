"""
Retry worker — polls the retry queue and resubmits due attempts.
Runs every RETRY_POLL_INTERVAL_SECONDS, picks the oldest tasks whose next_run_at <= now.

Tasks are deleted in the same transaction that claims them; the attempt is
submitted only after that commit. If the instance dies in between, the event is
left RETRYING without a task and the stalled-event sweep picks it up.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from hookgate.models.webhook_event import WebhookEvent
from hookgate.services.dispatcher import UNHANDLED, HandlerRegistry
from hookgate.services.retry_scheduler import RetryPolicy, dead_letter, defer, dequeue_due
from hookgate.utils.errors import ProcessorSaturated
from hookgate.utils.redis_client import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "retry_worker"


async def run_retry_worker(
    processor,
    handlers: HandlerRegistry,
    policy: RetryPolicy,
    session_factory: Optional[Callable] = None,
    poll_interval: float = 15.0,
    batch_size: int = 50,
):
    """Main retry worker loop. Runs continuously."""
    if session_factory is None:
        from hookgate.database import async_session_factory
        session_factory = async_session_factory

    logger.info("Retry worker started (poll every %.0fs)", poll_interval)

    while True:
        try:
            submitted = await process_due_retries(
                processor, handlers, policy, session_factory, batch_size=batch_size,
            )
            if submitted > 0:
                logger.info("Retry worker resubmitted %d webhooks", submitted)
        except Exception as e:
            logger.error("Retry worker error: %s", str(e), exc_info=True)

        await write_heartbeat(WORKER_NAME, ttl_seconds=max(300, int(poll_interval * 4)))
        await asyncio.sleep(poll_interval)


async def process_due_retries(
    processor,
    handlers: HandlerRegistry,
    policy: RetryPolicy,
    session_factory: Callable,
    now: Optional[datetime] = None,
    batch_size: int = 50,
) -> int:
    """Claim due retry tasks and hand them to the processor. Returns count submitted."""
    ready = []

    async with session_factory() as db:
        tasks = await dequeue_due(db, now=now, limit=batch_size)
        for task in tasks:
            event = await db.get(WebhookEvent, task.webhook_id)
            if event is None:
                logger.error("Retry task %s references missing webhook %s", task.id, task.webhook_id)
                continue

            handler = handlers.route_event(event)
            if handler is UNHANDLED:
                # Route table changed since the event was accepted
                await dead_letter(
                    db, event.id, attempts=task.attempt_number - 1,
                    error=f"No handler registered for {event.provider}/{event.topic}",
                    failure_kind="permanent",
                )
                continue
            ready.append((event, handler, task.attempt_number))
        await db.commit()

    submitted = 0
    for index, (event, handler, attempt_number) in enumerate(ready):
        try:
            processor.submit(event, handler, attempt_number=attempt_number)
            submitted += 1
        except ProcessorSaturated:
            # Put the rest back; they have not run so their attempt numbers stand
            await _requeue(ready[index:], policy, session_factory)
            logger.warning(
                "Processor saturated - %d retry attempts put back on the queue",
                len(ready) - index,
            )
            break

    return submitted


async def _requeue(items, policy: RetryPolicy, session_factory: Callable) -> None:
    async with session_factory() as db:
        for event, _handler, attempt_number in items:
            await defer(
                db, event.id, attempt_number, "processor queue full",
                delay=timedelta(seconds=policy.base_delay_seconds),
                record=False,
            )
        await db.commit()
