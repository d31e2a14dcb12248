"""
Simulate a signed provider webhook against a running gateway.

Signs the payload with the secret the gateway is configured with
(WEBHOOK_SECRETS / PROVIDERS), so the delivery passes verification.

Usage:
    python scripts/simulate_webhook.py
    python scripts/simulate_webhook.py --provider vcs --topic push
    python scripts/simulate_webhook.py --provider payment --event-id evt_1 --repeat 2
    python scripts/simulate_webhook.py --provider payment --tamper
    python scripts/simulate_webhook.py --provider payment --age 600
"""
import argparse
import asyncio
import json
import logging
import time
import uuid

import httpx

from hookgate.config import get_settings
from hookgate.services.providers import build_provider_registry
from hookgate.utils.webhook_signatures import compute_signature_header

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"

DEFAULT_TOPICS = {
    "payment": "payment_intent.succeeded",
    "vcs": "push",
    "commerce": "orders/create",
}


def build_request(provider, event_id: str, topic: str, age_seconds: int = 0) -> tuple[bytes, dict]:
    """Build a body and the headers the provider would send with it."""
    document = {"id": event_id, "created": int(time.time())}
    if provider.topic_path:
        document[provider.topic_path.split(".")[0]] = topic
    body = json.dumps(document, separators=(",", ":")).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    headers[provider.signature_header] = compute_signature_header(
        body, provider, timestamp=int(time.time()) - age_seconds,
    )
    if provider.event_id_header:
        headers[provider.event_id_header] = event_id
    if provider.topic_header:
        headers[provider.topic_header] = topic
    return body, headers


async def send(base_url: str, provider_name: str, resource: str, body: bytes, headers: dict):
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/webhooks/{provider_name}/{resource}", content=body, headers=headers,
        )
        logger.info(
            "%s -> %s %s (correlation_id=%s)",
            provider_name, resp.status_code, resp.text, resp.headers.get("X-Correlation-ID"),
        )
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate signed provider webhooks")
    parser.add_argument("--provider", default="payment")
    parser.add_argument("--resource", default="events")
    parser.add_argument("--topic", default=None)
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same event N times")
    parser.add_argument("--tamper", action="store_true", help="Alter the payload after signing")
    parser.add_argument("--age", type=int, default=0, help="Backdate the signature timestamp (seconds)")
    parser.add_argument("--base-url", default=BASE_URL)
    args = parser.parse_args()

    providers = build_provider_registry(get_settings())
    provider = providers.get(args.provider)
    if provider is None:
        parser.error(f"Unknown provider '{args.provider}' (known: {', '.join(sorted(providers))})")
    if not provider.secret:
        parser.error(f"No secret configured for '{args.provider}' - set WEBHOOK_SECRETS")

    event_id = args.event_id or f"evt_{uuid.uuid4().hex[:16]}"
    topic = args.topic or DEFAULT_TOPICS.get(args.provider, "test.event")
    body, headers = build_request(provider, event_id, topic, age_seconds=args.age)
    if args.tamper:
        body = body[:-1] + b" }"

    logger.info("Simulating %s/%s delivery %s x%d...", args.provider, topic, event_id, args.repeat)
    for _ in range(args.repeat):
        await send(args.base_url, args.provider, args.resource, body, headers)


if __name__ == "__main__":
    asyncio.run(main())
