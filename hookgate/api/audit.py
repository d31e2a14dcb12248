"""
Inspection API - read-only views over the audit trail and dead letter store.
All endpoints require the X-Admin-Key header.

- GET /api/v1/audit/webhooks/{webhook_id}  - event summary + ordered trail
- GET /api/v1/audit/entries                - by provider + time range and/or status
- GET /api/v1/audit/dead-letters           - dead letter inspection
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.api.deps import require_admin
from hookgate.database import get_db
from hookgate.models.dead_letter import DeadLetter
from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.statuses import AuditStatus
from hookgate.services.audit import get_audit_trail, list_entries

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/audit",
    tags=["audit"],
    dependencies=[Depends(require_admin)],
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _entry_dict(entry, provider: Optional[str] = None) -> dict:
    data = {
        "id": entry.id,
        "webhook_id": str(entry.webhook_id),
        "status": entry.status,
        "error_message": entry.error_message,
        "occurred_at": _iso(entry.occurred_at),
    }
    if provider is not None:
        data["provider"] = provider
    return data


@router.get("/webhooks/{webhook_id}")
async def get_webhook_trail(
    webhook_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Event summary, its audit trail oldest first, and the derived current status."""
    try:
        wid = uuid.UUID(webhook_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook_id format")

    event = await db.get(WebhookEvent, wid)
    if not event:
        raise HTTPException(status_code=404, detail="Webhook not found")

    trail = await get_audit_trail(db, wid)
    return {
        "webhook": {
            "id": str(event.id),
            "provider": event.provider,
            "resource": event.resource,
            "external_event_id": event.external_event_id,
            "topic": event.topic,
            "payload_hash": event.payload_hash,
            "received_at": _iso(event.received_at),
            "validation_status": event.validation_status,
            "duplicate_of": str(event.duplicate_of) if event.duplicate_of else None,
            "failed_attempts": event.failed_attempts,
            "correlation_id": event.correlation_id,
        },
        "current_status": trail[-1].status if trail else None,
        "trail": [_entry_dict(entry) for entry in trail],
    }


@router.get("/entries")
async def query_entries(
    provider: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Audit entries by provider + time range and/or by status, newest first."""
    if status is not None and status not in AuditStatus.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    if since and until and since >= until:
        raise HTTPException(status_code=400, detail="'since' must be before 'until'")

    rows = await list_entries(
        db, provider=provider, since=since, until=until, status=status, limit=limit,
    )
    return {
        "count": len(rows),
        "entries": [_entry_dict(entry, entry_provider) for entry, entry_provider in rows],
    }


@router.get("/dead-letters")
async def list_dead_letters(
    provider: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Dead-lettered webhooks, newest first."""
    stmt = select(DeadLetter)
    if provider:
        stmt = stmt.where(DeadLetter.provider == provider)
    stmt = stmt.order_by(DeadLetter.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    letters = result.scalars().all()

    return {
        "count": len(letters),
        "dead_letters": [
            {
                "id": str(letter.id),
                "webhook_id": str(letter.webhook_id),
                "provider": letter.provider,
                "topic": letter.topic,
                "attempts": letter.attempts,
                "failure_kind": letter.failure_kind,
                "last_error": letter.last_error,
                "correlation_id": letter.correlation_id,
                "created_at": _iso(letter.created_at),
            }
            for letter in letters
        ],
    }
