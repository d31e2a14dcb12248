"""
Provider configuration schema - how each provider signs and identifies its events.

Adding a provider is a configuration change: a new ProviderConfig record,
never a new code branch.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    secret: str = Field(default="", repr=False)

    # Signature scheme
    algorithm: Literal["hmac-sha256", "hmac-sha1"] = "hmac-sha256"
    encoding: Literal["hex", "base64"] = "hex"
    signature_header: str
    signature_prefix: str = ""  # e.g. "sha1=" or "sha256="
    scheme: Literal["plain", "timestamped"] = "plain"  # timestamped: t=<unix>,v1=<sig>
    timestamp_tolerance_seconds: int = 300

    # Field mappings (dot-separated payload paths or header names)
    event_id_path: Optional[str] = "id"
    event_id_header: Optional[str] = None
    topic_path: Optional[str] = "type"
    topic_header: Optional[str] = None


# Built-in provider table. Secrets come from WEBHOOK_SECRETS.
DEFAULT_PROVIDERS: dict[str, dict] = {
    "payment": {
        "algorithm": "hmac-sha256",
        "encoding": "hex",
        "signature_header": "Stripe-Signature",
        "scheme": "timestamped",
        "timestamp_tolerance_seconds": 300,
        "event_id_path": "id",
        "topic_path": "type",
    },
    "vcs": {
        "algorithm": "hmac-sha1",
        "encoding": "hex",
        "signature_header": "X-Hub-Signature",
        "signature_prefix": "sha1=",
        "event_id_path": None,
        "event_id_header": "X-GitHub-Delivery",
        "topic_path": None,
        "topic_header": "X-GitHub-Event",
    },
    "commerce": {
        "algorithm": "hmac-sha256",
        "encoding": "base64",
        "signature_header": "X-Shopify-Hmac-Sha256",
        "event_id_path": "id",
        "event_id_header": "X-Shopify-Webhook-Id",
        "topic_path": None,
        "topic_header": "X-Shopify-Topic",
    },
}
