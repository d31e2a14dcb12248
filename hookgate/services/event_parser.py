"""
Event parser - turns a verified raw body into the fields the gateway routes on.

Where the event id and topic live is provider configuration (dot-separated
payload paths or header hints), never per-provider code.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from hookgate.schemas.provider_config import ProviderConfig
from hookgate.utils.errors import MalformedPayload

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 255


@dataclass(frozen=True)
class ParsedEvent:
    external_event_id: str
    topic: str
    payload: dict


def extract_path(document: Any, path: Optional[str]) -> Any:
    """Follow a dot-separated path ("data.object.id") through nested objects."""
    if not path:
        return None
    current = document
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _as_field(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def parse_event(
    raw_payload: bytes,
    provider: ProviderConfig,
    topic_hint: Optional[str] = None,
    event_id_hint: Optional[str] = None,
) -> ParsedEvent:
    """
    Deserialize the body and extract the external event id and topic.

    Raises MalformedPayload when the body is not a JSON object or the id/topic
    cannot be found. This is terminal: the same bytes will never parse differently.
    """
    try:
        payload = json.loads(raw_payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayload(f"Payload is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload must be a JSON object")

    external_event_id = None
    if provider.event_id_header:
        external_event_id = _as_field(event_id_hint)
    if external_event_id is None:
        external_event_id = _as_field(extract_path(payload, provider.event_id_path))
    if external_event_id is None:
        raise MalformedPayload(f"No event id found for provider '{provider.name}'")

    topic = _as_field(extract_path(payload, provider.topic_path))
    if topic is None:
        topic = _as_field(topic_hint)
    if topic is None:
        raise MalformedPayload(f"No event topic found for provider '{provider.name}'")

    if len(external_event_id) > MAX_FIELD_LENGTH or len(topic) > MAX_FIELD_LENGTH:
        raise MalformedPayload("Event id or topic exceeds 255 characters")

    return ParsedEvent(external_event_id=external_event_id, topic=topic, payload=payload)
