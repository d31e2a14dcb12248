"""
Provider registry - built once at startup from Settings and passed by reference.

Merge order (later wins): built-in defaults, PROVIDERS_FILE, PROVIDERS, WEBHOOK_SECRETS.
"""
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from hookgate.config import Settings
from hookgate.schemas.provider_config import DEFAULT_PROVIDERS, ProviderConfig

logger = logging.getLogger(__name__)

ProviderRegistry = Mapping[str, ProviderConfig]


def _load_providers_file(path: str) -> dict[str, dict]:
    """Read provider overrides from a JSON file. A missing file is a startup error."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Providers file {path} must contain a JSON object")
    return data


def _merge(base: dict[str, dict], overrides: dict[str, dict]) -> None:
    for name, record in overrides.items():
        merged = dict(base.get(name, {}))
        merged.update(record or {})
        base[name] = merged


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Build the immutable provider name -> ProviderConfig mapping."""
    raw: dict[str, dict] = {name: dict(record) for name, record in DEFAULT_PROVIDERS.items()}

    if settings.providers_file:
        _merge(raw, _load_providers_file(settings.providers_file))
    _merge(raw, settings.providers)

    for name, secret in settings.webhook_secrets.items():
        if name not in raw:
            logger.warning("Secret configured for unknown provider '%s' - ignored", name)
            continue
        raw[name]["secret"] = secret

    registry = {
        name: ProviderConfig(**{**record, "name": name})
        for name, record in raw.items()
    }

    for name, config in registry.items():
        if not config.secret:
            logger.warning(
                "No webhook secret configured for provider '%s' - "
                "its deliveries will be rejected with 401",
                name,
            )

    logger.info("Provider registry loaded: %s", ", ".join(sorted(registry)))
    return MappingProxyType(registry)
