"""
Retry scheduler tests — backoff, retry queue, dead letter store.
"""
import random
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from hookgate.models.dead_letter import DeadLetter
from hookgate.models.retry_task import RetryTask
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus
from hookgate.services.audit import record_transition
from hookgate.services.retry_scheduler import (
    RetryPolicy,
    base_backoff_seconds,
    compute_backoff,
    dead_letter,
    defer,
    dequeue_due,
    schedule_retry,
)


async def _received_event(db, provider="payment", topic="payment_intent.succeeded") -> uuid.UUID:
    event = WebhookEvent(
        provider=provider, topic=topic, external_event_id="evt_1",
        raw_payload=b"{}", payload_hash="0" * 64, correlation_id="cid-1",
    )
    db.add(event)
    await db.flush()
    await record_transition(db, event.id, AuditStatus.RECEIVED)
    return event.id


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.jitter == 0.2

    @pytest.mark.parametrize("kwargs", [
        {"base_delay_seconds": 0},
        {"base_delay_seconds": 10, "max_delay_seconds": 5},
        {"max_attempts": 0},
        {"jitter": 1.0},
        {"jitter": -0.1},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_settings(self):
        from hookgate.config import Settings
        settings = Settings(
            retry_base_delay_seconds=2, retry_max_delay_seconds=20,
            retry_max_attempts=3, retry_jitter=0.1,
        )
        assert RetryPolicy.from_settings(settings) == RetryPolicy(2, 20, 3, 0.1)


class TestBackoff:
    def test_exponential_then_capped(self):
        policy = RetryPolicy(base_delay_seconds=30, max_delay_seconds=600, jitter=0)
        delays = [base_backoff_seconds(n, policy) for n in range(1, 7)]
        assert delays == [60, 120, 240, 480, 600, 600]

    def test_strictly_increasing_until_cap(self, retry_policy):
        delays = [base_backoff_seconds(n, retry_policy) for n in range(1, 6)]
        assert all(a < b for a, b in zip(delays, delays[1:]))

    def test_jitter_within_twenty_percent(self):
        policy = RetryPolicy(base_delay_seconds=30, max_delay_seconds=3600, jitter=0.2)
        rng = random.Random(42)
        for attempt in range(1, 6):
            base = base_backoff_seconds(attempt, policy)
            for _ in range(50):
                delay = compute_backoff(attempt, policy, rng).total_seconds()
                assert base * 0.8 <= delay <= base * 1.2

    def test_jitter_actually_varies(self):
        policy = RetryPolicy(jitter=0.2)
        rng = random.Random(7)
        samples = {compute_backoff(1, policy, rng).total_seconds() for _ in range(10)}
        assert len(samples) > 1

    def test_no_jitter_is_exact(self, retry_policy):
        assert compute_backoff(2, retry_policy) == timedelta(seconds=4)


class TestScheduleRetry:
    async def test_creates_task_for_next_attempt(self, db, retry_policy):
        wid = await _received_event(db)
        now = datetime.now(timezone.utc)
        task = await schedule_retry(db, wid, 1, "connection reset", retry_policy, now=now)

        assert task.attempt_number == 2
        assert task.next_run_at == now + timedelta(seconds=2)
        assert task.next_run_at > now
        assert task.last_error == "connection reset"

    async def test_records_retrying(self, db, retry_policy, read_trail):
        wid = await _received_event(db)
        await schedule_retry(db, wid, 1, "502 from downstream", retry_policy)
        await db.commit()
        assert await read_trail(wid) == ["RECEIVED", "RETRYING"]

    async def test_counts_failed_attempt_on_event(self, db, retry_policy):
        wid = await _received_event(db)
        await schedule_retry(db, wid, 2, "timeout", retry_policy)
        await schedule_retry(db, wid, 1, "late report from attempt 1", retry_policy)
        event = await db.get(WebhookEvent, wid)
        assert event.failed_attempts == 2

    async def test_exhaustion_dead_letters(self, db, retry_policy, read_trail):
        wid = await _received_event(db)
        with patch("hookgate.services.retry_scheduler.send_alert", new_callable=AsyncMock) as alert:
            result = await schedule_retry(db, wid, 5, "still down", retry_policy)
        await db.commit()

        assert result is None
        assert await read_trail(wid) == ["RECEIVED", "PROCESSING_FAILED", "DEAD_LETTERED"]
        letter = (await db.execute(select(DeadLetter))).scalar_one()
        assert letter.webhook_id == wid
        assert letter.failure_kind == "exhausted"
        assert letter.attempts == 5
        assert letter.last_error == "still down"
        alert.assert_awaited_once()
        assert (await db.execute(select(RetryTask))).scalars().all() == []

    async def test_full_lineage_reaches_dead_letter(self, db, retry_policy, read_trail):
        wid = await _received_event(db)
        now = datetime.now(timezone.utc)
        attempt = 1
        delays = []
        with patch("hookgate.services.retry_scheduler.send_alert", new_callable=AsyncMock):
            while True:
                task = await schedule_retry(db, wid, attempt, "timeout", retry_policy, now=now)
                if task is None:
                    break
                delays.append(task.next_run_at - now)
                assert task.attempt_number == attempt + 1
                attempt = task.attempt_number
        await db.commit()

        assert attempt == 5
        assert delays == sorted(delays) and len(set(delays)) == len(delays)
        assert await read_trail(wid) == [
            "RECEIVED", "RETRYING", "RETRYING", "RETRYING", "RETRYING",
            "PROCESSING_FAILED", "DEAD_LETTERED",
        ]


class TestDefer:
    async def test_keeps_attempt_number(self, db, retry_policy, read_trail):
        wid = await _received_event(db)
        task = await defer(db, wid, 1, "processor queue full", timedelta(seconds=5))
        await db.commit()
        assert task.attempt_number == 1
        assert await read_trail(wid) == ["RECEIVED", "RETRYING"]
        assert (await db.get(WebhookEvent, wid)).failed_attempts == 0

    async def test_without_audit_record(self, db, read_trail):
        wid = await _received_event(db)
        await defer(db, wid, 3, "processor queue full", timedelta(seconds=5), record=False)
        await db.commit()
        assert await read_trail(wid) == ["RECEIVED"]


class TestDeadLetter:
    async def test_permanent_failure(self, db):
        wid = await _received_event(db, provider="commerce", topic="orders/create")
        with patch("hookgate.services.retry_scheduler.send_alert", new_callable=AsyncMock) as alert:
            letter = await dead_letter(db, wid, attempts=1, error="order rejected", failure_kind="permanent")

        assert letter.provider == "commerce"
        assert letter.topic == "orders/create"
        assert letter.correlation_id == "cid-1"
        assert alert.await_args.kwargs["correlation_id"] == "cid-1"


class TestDequeueDue:
    async def test_returns_due_tasks_oldest_first_and_deletes(self, db, retry_policy):
        wid = await _received_event(db)
        now = datetime.now(timezone.utc)
        late = await defer(db, wid, 2, "x", timedelta(seconds=-10), record=False, now=now)
        early = await defer(db, wid, 3, "x", timedelta(seconds=-20), record=False, now=now)
        await defer(db, wid, 4, "x", timedelta(seconds=60), record=False, now=now)
        await db.commit()

        due = await dequeue_due(db, now=now)
        await db.commit()
        assert [t.id for t in due] == [early.id, late.id]

        remaining = (await db.execute(select(RetryTask))).scalars().all()
        assert [t.attempt_number for t in remaining] == [4]

    async def test_respects_limit(self, db):
        wid = await _received_event(db)
        now = datetime.now(timezone.utc)
        for n in range(3):
            await defer(db, wid, n + 1, "x", timedelta(seconds=-1 - n), record=False, now=now)
        await db.commit()

        assert len(await dequeue_due(db, now=now, limit=2)) == 2
        assert len(await dequeue_due(db, now=now, limit=2)) == 1
        assert await dequeue_due(db, now=now) == []
