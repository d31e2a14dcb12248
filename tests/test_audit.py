"""
Audit logger tests — append-only trail, state machine enforcement, fallback channel.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from hookgate.models.audit_log import AuditLogEntry
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus
from hookgate.services.audit import (
    get_audit_trail,
    get_current_status,
    list_entries,
    record_transition,
)
from hookgate.utils.errors import AuditWriteError, InvalidAuditTransition
from hookgate.utils.metrics import MetricName


async def _event(db, provider="payment") -> uuid.UUID:
    event = WebhookEvent(provider=provider, raw_payload=b"{}", payload_hash="0" * 64)
    db.add(event)
    await db.flush()
    return event.id


class TestRecordTransition:
    async def test_first_entry_must_be_received(self, db):
        wid = await _event(db)
        with pytest.raises(InvalidAuditTransition):
            await record_transition(db, wid, AuditStatus.PROCESSED)

    async def test_happy_path(self, db):
        wid = await _event(db)
        await record_transition(db, wid, AuditStatus.RECEIVED)
        await record_transition(db, wid, AuditStatus.PROCESSED)
        trail = await get_audit_trail(db, wid)
        assert [e.status for e in trail] == ["RECEIVED", "PROCESSED"]

    async def test_retry_path_to_dead_letter(self, db):
        wid = await _event(db)
        for status in ("RECEIVED", "RETRYING", "RETRYING", "PROCESSING_FAILED", "DEAD_LETTERED"):
            await record_transition(db, wid, status)
        assert await get_current_status(db, wid) == "DEAD_LETTERED"

    async def test_nothing_after_terminal(self, db):
        wid = await _event(db)
        await record_transition(db, wid, AuditStatus.RECEIVED)
        await record_transition(db, wid, AuditStatus.PROCESSED)
        with pytest.raises(InvalidAuditTransition) as exc_info:
            await record_transition(db, wid, AuditStatus.RETRYING)
        assert exc_info.value.current == "PROCESSED"
        assert exc_info.value.requested == "RETRYING"

    async def test_no_processed_after_dead_lettered(self, db):
        wid = await _event(db)
        for status in ("RECEIVED", "PROCESSING_FAILED", "DEAD_LETTERED"):
            await record_transition(db, wid, status)
        with pytest.raises(InvalidAuditTransition):
            await record_transition(db, wid, AuditStatus.PROCESSED)

    async def test_unknown_status_rejected(self, db):
        wid = await _event(db)
        with pytest.raises(ValueError):
            await record_transition(db, wid, "VALID")

    async def test_error_message_stored_and_truncated(self, db):
        wid = await _event(db)
        await record_transition(db, wid, AuditStatus.RECEIVED)
        entry = await record_transition(db, wid, AuditStatus.VALIDATION_FAILED, "x" * 5000)
        assert len(entry.error_message) == 2000
        assert entry.error_message.endswith("...")

    async def test_occurred_at_never_goes_backwards(self, db):
        wid = await _event(db)
        future = datetime.now(timezone.utc) + timedelta(minutes=5)
        db.add(AuditLogEntry(webhook_id=wid, status=AuditStatus.RECEIVED, occurred_at=future))
        await db.flush()

        entry = await record_transition(db, wid, AuditStatus.PROCESSED)
        occurred = entry.occurred_at
        if occurred.tzinfo is None:
            occurred = occurred.replace(tzinfo=timezone.utc)
        assert occurred >= future
        assert await get_current_status(db, wid) == "PROCESSED"

    async def test_store_failure_falls_back_and_raises(self, db, caplog, mock_redis):
        wid = await _event(db)
        original_flush = db.flush

        async def failing_flush(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        db.flush = failing_flush
        try:
            with patch("hookgate.services.audit.send_alert", new_callable=AsyncMock) as alert, \
                 caplog.at_level(logging.ERROR, logger="hookgate.audit.fallback"):
                with pytest.raises(AuditWriteError):
                    await record_transition(db, wid, AuditStatus.RECEIVED)
        finally:
            db.flush = original_flush

        fallback = [r for r in caplog.records if r.name == "hookgate.audit.fallback"]
        assert len(fallback) == 1
        assert fallback[0].webhook_id == str(wid)
        assert fallback[0].status == "RECEIVED"
        alert.assert_awaited_once()
        mock_redis.incrby.assert_awaited_with("hookgate:metrics:" + MetricName.AUDIT_FALLBACK, 1)


class TestAppendOnly:
    async def test_update_rejected(self, db):
        wid = await _event(db)
        entry = await record_transition(db, wid, AuditStatus.RECEIVED)
        entry.status = AuditStatus.PROCESSED
        with pytest.raises(RuntimeError, match="append-only"):
            await db.flush()
        await db.rollback()

    async def test_delete_rejected(self, db):
        wid = await _event(db)
        entry = await record_transition(db, wid, AuditStatus.RECEIVED)
        await db.delete(entry)
        with pytest.raises(RuntimeError, match="append-only"):
            await db.flush()
        await db.rollback()


class TestQueries:
    async def test_current_status_none_without_entries(self, db):
        assert await get_current_status(db, uuid.uuid4()) is None

    async def test_list_by_provider(self, db):
        pay = await _event(db, "payment")
        vcs = await _event(db, "vcs")
        await record_transition(db, pay, AuditStatus.RECEIVED)
        await record_transition(db, vcs, AuditStatus.RECEIVED)

        rows = await list_entries(db, provider="vcs")
        assert [(e.webhook_id, p) for e, p in rows] == [(vcs, "vcs")]

    async def test_list_by_status(self, db):
        a = await _event(db)
        b = await _event(db)
        for wid in (a, b):
            await record_transition(db, wid, AuditStatus.RECEIVED)
        await record_transition(db, a, AuditStatus.PROCESSED)

        rows = await list_entries(db, status=AuditStatus.PROCESSED)
        assert [e.webhook_id for e, _ in rows] == [a]

    async def test_list_by_time_range(self, db):
        wid = await _event(db)
        await record_transition(db, wid, AuditStatus.RECEIVED)
        now = datetime.now(timezone.utc)

        assert len(await list_entries(db, since=now - timedelta(minutes=1))) == 1
        assert len(await list_entries(db, since=now + timedelta(minutes=1))) == 0
        assert len(await list_entries(db, until=now - timedelta(minutes=1))) == 0

    async def test_list_newest_first_with_limit(self, db):
        wid = await _event(db)
        for status in ("RECEIVED", "RETRYING", "PROCESSED"):
            await record_transition(db, wid, status)
        rows = await list_entries(db, limit=2)
        assert [e.status for e, _ in rows] == ["PROCESSED", "RETRYING"]
