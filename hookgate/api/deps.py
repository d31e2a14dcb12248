"""
Shared request dependencies - startup-built objects held on app.state.
"""
import hmac
import logging

from fastapi import Header, HTTPException, Request

from hookgate.config import get_settings

logger = logging.getLogger(__name__)


def get_provider_registry(request: Request):
    return request.app.state.providers


def get_handler_registry(request: Request):
    return request.app.state.handlers


def get_processor(request: Request):
    return request.app.state.processor


def get_retry_policy(request: Request):
    return request.app.state.retry_policy


async def require_admin(x_admin_key: str = Header(default="")) -> None:
    """Gate the inspection API behind ADMIN_API_KEY (constant-time compare)."""
    expected = get_settings().admin_api_key
    if not expected:
        logger.warning("ADMIN_API_KEY not set - inspection API is disabled")
        raise HTTPException(status_code=403, detail="Admin API disabled")
    if not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin key")
