"""
Webhook signature validation - verify incoming webhooks are authentic.

Every provider is described by a ProviderConfig (algorithm, encoding, header,
prefix, scheme). Supported schemes:
- plain:       HMAC over the raw body, optional prefix (e.g. "sha1=<hex>")
- timestamped: "t=<unix>,v1=<hex>" - HMAC over "{t}.{body}", with a replay window

All comparisons use hmac.compare_digest (constant time).
"""
import base64
import hashlib
import hmac
import logging
import time
from typing import Optional

from hookgate.schemas.provider_config import ProviderConfig
from hookgate.utils.errors import (
    ExpiredTimestamp,
    InvalidSignature,
    MalformedSignatureHeader,
    MissingSecret,
)

logger = logging.getLogger(__name__)

_DIGESTS = {
    "hmac-sha256": hashlib.sha256,
    "hmac-sha1": hashlib.sha1,
}


def _digest(secret: str, message: bytes, provider: ProviderConfig) -> str:
    mac = hmac.new(secret.encode("utf-8"), message, _DIGESTS[provider.algorithm])
    if provider.encoding == "base64":
        return base64.b64encode(mac.digest()).decode("ascii")
    return mac.hexdigest()


def _parse_timestamped_header(header: str) -> tuple[int, list[str]]:
    """
    Parse "t=<unix>,v1=<sig>[,v1=<sig>][,v0=<ignored>]".
    Multiple v1 entries appear during secret rotation.
    """
    timestamp_str = None
    signatures: list[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp_str = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp_str:
        raise MalformedSignatureHeader("Signature header has no timestamp")
    try:
        timestamp = int(timestamp_str)
    except ValueError:
        raise MalformedSignatureHeader("Signature header timestamp is not an integer")
    if not signatures:
        raise MalformedSignatureHeader("Signature header has no v1 signature")
    return timestamp, signatures


def _matches(expected: str, provided: str, provider: ProviderConfig) -> bool:
    if provider.encoding == "hex":
        provided = provided.lower()
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def verify_signature(
    raw_payload: bytes,
    signature_header: Optional[str],
    provider: ProviderConfig,
    now: Optional[float] = None,
) -> None:
    """
    Verify a delivery against its provider configuration.
    Returns None when authentic, raises a ValidationError subclass otherwise.
    Pure apart from reading the clock when `now` is not given.
    """
    if not provider.secret:
        raise MissingSecret(f"No secret configured for provider '{provider.name}'")
    if not signature_header or not signature_header.strip():
        raise MalformedSignatureHeader(f"Missing {provider.signature_header} header")

    header = signature_header.strip()

    if provider.scheme == "timestamped":
        timestamp, candidates = _parse_timestamped_header(header)
        current = time.time() if now is None else now
        if abs(current - timestamp) > provider.timestamp_tolerance_seconds:
            raise ExpiredTimestamp(
                f"Signature timestamp {timestamp} outside "
                f"{provider.timestamp_tolerance_seconds}s tolerance"
            )
        message = f"{timestamp}.".encode("utf-8") + raw_payload
    else:
        if provider.signature_prefix:
            if not header.startswith(provider.signature_prefix):
                raise MalformedSignatureHeader(
                    f"Signature header missing '{provider.signature_prefix}' prefix"
                )
            header = header[len(provider.signature_prefix):]
        if not header:
            raise MalformedSignatureHeader("Signature header has no signature value")
        candidates = [header]
        message = raw_payload

    expected = _digest(provider.secret, message, provider)
    # Evaluate every candidate so timing does not depend on which one matched
    results = [_matches(expected, candidate, provider) for candidate in candidates]
    if not any(results):
        raise InvalidSignature(f"Signature mismatch for provider '{provider.name}'")


def compute_signature_header(
    raw_payload: bytes,
    provider: ProviderConfig,
    timestamp: Optional[int] = None,
) -> str:
    """
    Build the header value a provider would send for this payload.
    Used by the simulation script and tests.
    """
    if provider.scheme == "timestamped":
        ts = int(time.time()) if timestamp is None else timestamp
        signature = _digest(provider.secret, f"{ts}.".encode("utf-8") + raw_payload, provider)
        return f"t={ts},v1={signature}"
    return provider.signature_prefix + _digest(provider.secret, raw_payload, provider)


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for audit correlation."""
    return hashlib.sha256(body).hexdigest()
