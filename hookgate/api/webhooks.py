"""
Webhook endpoints - one route shape for every provider.

POST /webhooks/{provider}/{resource}
POST /webhooks/{provider}

The route is thin: it enforces the size limit, reads the raw body and hands
everything to the ingestion pipeline. Responses carry only a status word so
nothing about the payload or the failure is reflected back to the caller.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.api.deps import (
    get_handler_registry,
    get_processor,
    get_provider_registry,
    get_retry_policy,
)
from hookgate.config import get_settings
from hookgate.database import get_db
from hookgate.services.ingestion import ingest_webhook
from hookgate.utils.errors import InfrastructureError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _status(status_code: int, word: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": word})


async def _receive(
    provider_name: str,
    resource: Optional[str],
    request: Request,
    db: AsyncSession,
    providers,
    handlers,
    processor,
    retry_policy,
) -> JSONResponse:
    provider = providers.get(provider_name)
    if provider is None:
        logger.warning("Webhook for unknown provider '%s'", provider_name)
        return _status(404, "unknown_provider")

    settings = get_settings()
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.max_payload_bytes:
        return _status(413, "payload_too_large")
    body = await request.body()
    if len(body) > settings.max_payload_bytes:
        return _status(413, "payload_too_large")

    try:
        result = await ingest_webhook(
            db,
            provider,
            body,
            request.headers,
            handlers,
            processor,
            retry_policy,
            resource=resource,
            dedup_retention_days=settings.dedup_retention_days,
        )
    except InfrastructureError as e:
        await db.rollback()
        logger.error(
            "Webhook ingestion infrastructure failure (%s): %s", type(e).__name__, str(e),
            extra={"provider": provider_name, "error_code": type(e).__name__},
        )
        return _status(500, "error")
    except Exception as e:
        await db.rollback()
        logger.error(
            "Webhook ingestion failed: %s", str(e), exc_info=True,
            extra={"provider": provider_name},
        )
        return _status(500, "error")

    return _status(result.status_code, result.status)


@router.post("/{provider}/{resource}")
async def receive_webhook(
    provider: str,
    resource: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    providers=Depends(get_provider_registry),
    handlers=Depends(get_handler_registry),
    processor=Depends(get_processor),
    retry_policy=Depends(get_retry_policy),
):
    """Receive a provider callback for a named resource."""
    return await _receive(provider, resource, request, db, providers, handlers, processor, retry_policy)


@router.post("/{provider}")
async def receive_provider_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    providers=Depends(get_provider_registry),
    handlers=Depends(get_handler_registry),
    processor=Depends(get_processor),
    retry_policy=Depends(get_retry_policy),
):
    """Receive a provider callback that carries no resource segment."""
    return await _receive(provider, None, request, db, providers, handlers, processor, retry_policy)
