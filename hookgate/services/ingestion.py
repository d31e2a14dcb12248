"""
Ingestion pipeline - the synchronous phase of one delivery.

receive -> RECEIVED -> verify -> parse -> dedupe reservation -> route -> commit -> submit

The event row and its RECEIVED entry are written before verification so that
rejected deliveries leave a trail too. Nothing is acknowledged with 200 until
the dedupe reservation has been committed, and the handler is only submitted
after that commit, so a crash in between is recovered by the stalled-event
sweep instead of losing the event.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.models.webhook_event import WebhookEvent
from hookgate.schemas.provider_config import ProviderConfig
from hookgate.schemas.statuses import AuditStatus, ValidationStatus
from hookgate.services.audit import record_transition
from hookgate.services.dedup import check_and_reserve
from hookgate.services.dispatcher import UNHANDLED, HandlerRegistry
from hookgate.services.event_parser import parse_event
from hookgate.services.retry_scheduler import RetryPolicy, defer
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.errors import MalformedPayload, ProcessorSaturated, ValidationError
from hookgate.utils.logging import get_correlation_id
from hookgate.utils.metrics import MetricName, Timer, increment_counter
from hookgate.utils.webhook_signatures import compute_payload_hash, verify_signature

logger = logging.getLogger(__name__)

PROCESSOR_FULL_REASON = "processor queue full"


@dataclass(frozen=True)
class IngestResult:
    status_code: int
    status: str
    webhook_id: Optional[uuid.UUID] = None


def _rejection_message(status_code: int, status: str, error_code: str, error: Exception) -> str:
    """VALIDATION_FAILED detail, e.g. "[401 unauthorized] InvalidSignature: ..."."""
    return f"[{status_code} {status}] {error_code}: {error}"


def _header(headers: Mapping[str, str], name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette headers are not
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


async def ingest_webhook(
    db: AsyncSession,
    provider: ProviderConfig,
    raw_payload: bytes,
    headers: Mapping[str, str],
    registry: HandlerRegistry,
    processor,
    retry_policy: RetryPolicy,
    resource: Optional[str] = None,
    dedup_retention_days: int = 30,
) -> IngestResult:
    """
    Run one delivery through the pipeline.

    Returns the HTTP status and status word to acknowledge with. Infrastructure
    failures (dedupe store, audit store) propagate so the caller answers 500
    and the provider redelivers.
    """
    timer = Timer().start()

    event = WebhookEvent(
        provider=provider.name,
        resource=resource,
        raw_payload=raw_payload,
        payload_hash=compute_payload_hash(raw_payload),
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await db.flush()
    await record_transition(db, event.id, AuditStatus.RECEIVED)
    await increment_counter(MetricName.RECEIVED)

    log_extra = {"webhook_id": str(event.id), "provider": provider.name}

    # 1. Authenticity
    try:
        verify_signature(raw_payload, _header(headers, provider.signature_header), provider)
    except ValidationError as e:
        event.validation_status = e.validation_status
        await record_transition(
            db, event.id, AuditStatus.VALIDATION_FAILED,
            _rejection_message(401, "unauthorized", type(e).__name__, e),
        )
        await db.commit()
        await increment_counter(MetricName.VALIDATION_FAILED)
        logger.warning(
            "Webhook rejected (%s): %s", type(e).__name__, str(e),
            extra={**log_extra, "error_code": type(e).__name__},
        )
        return IngestResult(401, "unauthorized", event.id)
    event.validation_status = ValidationStatus.VALID

    # 2. Routing fields
    try:
        parsed = parse_event(
            raw_payload,
            provider,
            topic_hint=_header(headers, provider.topic_header),
            event_id_hint=_header(headers, provider.event_id_header),
        )
    except MalformedPayload as e:
        await record_transition(
            db, event.id, AuditStatus.VALIDATION_FAILED,
            _rejection_message(400, "malformed", "MalformedPayload", e),
        )
        await db.commit()
        await increment_counter(MetricName.MALFORMED)
        logger.warning(
            "Malformed webhook payload: %s", str(e),
            extra={**log_extra, "error_code": "MalformedPayload"},
        )
        return IngestResult(400, "malformed", event.id)

    event.external_event_id = parsed.external_event_id
    event.topic = parsed.topic
    await db.flush()
    log_extra["topic"] = parsed.topic

    # 3. Idempotency at the boundary
    reservation = await check_and_reserve(
        db, provider.name, parsed.external_event_id, event.id,
        retention_days=dedup_retention_days,
    )
    if not reservation.accepted:
        event.duplicate_of = reservation.webhook_id
        await record_transition(
            db, event.id, AuditStatus.DUPLICATE,
            f"Duplicate of {reservation.webhook_id} "
            f"({provider.name}/{parsed.external_event_id})",
        )
        await db.commit()
        await increment_counter(MetricName.DUPLICATE)
        return IngestResult(200, "duplicate", event.id)

    # 4. Dispatch
    handler = registry.route(provider.name, parsed.topic)
    if handler is UNHANDLED:
        await record_transition(
            db, event.id, AuditStatus.UNHANDLED,
            f"No handler registered for {provider.name}/{parsed.topic}",
        )
        await db.commit()
        await increment_counter(MetricName.UNHANDLED)
        logger.info("Unhandled topic %s/%s acknowledged", provider.name, parsed.topic, extra=log_extra)
        return IngestResult(200, "unhandled", event.id)

    # Reservation is durable before the ack and before any handler runs
    await db.commit()

    try:
        processor.submit(event, handler)
    except ProcessorSaturated as e:
        await defer(
            db, event.id, 1, PROCESSOR_FULL_REASON,
            delay=timedelta(seconds=retry_policy.base_delay_seconds),
        )
        await db.commit()
        logger.warning("Processor saturated, webhook deferred: %s", str(e), extra=log_extra)
        await send_alert(
            AlertType.PROCESSOR_SATURATED,
            f"Async processor saturated - deliveries are being deferred to the retry queue ({e})",
            severity="warning",
        )

    logger.info(
        "Webhook %s/%s accepted in %dms", provider.name, parsed.topic, timer.stop(),
        extra=log_extra,
    )
    return IngestResult(200, "accepted", event.id)
