"""
Tests for hookgate/services/providers.py and hookgate/config.py — provider registry.
"""
import json

import pytest
from pydantic import ValidationError

from hookgate.config import Settings
from hookgate.services.providers import build_provider_registry


class TestBuildProviderRegistry:
    def test_builtins_present(self):
        registry = build_provider_registry(Settings())
        assert set(registry) == {"payment", "vcs", "commerce"}
        assert registry["payment"].scheme == "timestamped"
        assert registry["vcs"].algorithm == "hmac-sha1"
        assert registry["commerce"].encoding == "base64"

    def test_secrets_applied(self):
        registry = build_provider_registry(Settings(webhook_secrets={"vcs": "s3cret"}))
        assert registry["vcs"].secret == "s3cret"
        assert registry["payment"].secret == ""

    def test_secret_for_unknown_provider_ignored(self):
        registry = build_provider_registry(Settings(webhook_secrets={"ghost": "x"}))
        assert "ghost" not in registry

    def test_secret_hidden_from_repr(self):
        registry = build_provider_registry(Settings(webhook_secrets={"vcs": "s3cret"}))
        assert "s3cret" not in repr(registry["vcs"])

    def test_new_provider_from_settings(self):
        registry = build_provider_registry(Settings(
            providers={"crm": {"signature_header": "X-Crm-Signature", "topic_path": "event.name"}},
            webhook_secrets={"crm": "crm_secret"},
        ))
        crm = registry["crm"]
        assert crm.name == "crm"
        assert crm.topic_path == "event.name"
        assert crm.event_id_path == "id"
        assert crm.secret == "crm_secret"

    def test_override_merges_over_builtin(self):
        registry = build_provider_registry(Settings(
            providers={"payment": {"timestamp_tolerance_seconds": 60}},
        ))
        assert registry["payment"].timestamp_tolerance_seconds == 60
        assert registry["payment"].signature_header == "Stripe-Signature"

    def test_providers_file_then_env_override(self, tmp_path):
        path = tmp_path / "providers.json"
        path.write_text(json.dumps({
            "billing": {"signature_header": "X-Billing-Sig", "encoding": "base64"},
            "payment": {"timestamp_tolerance_seconds": 120},
        }))
        registry = build_provider_registry(Settings(
            providers_file=str(path),
            providers={"payment": {"timestamp_tolerance_seconds": 30}},
        ))
        assert registry["billing"].encoding == "base64"
        # Later sources win
        assert registry["payment"].timestamp_tolerance_seconds == 30

    def test_missing_providers_file_fails_startup(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            build_provider_registry(Settings(providers_file=str(tmp_path / "nope.json")))

    def test_non_object_providers_file_rejected(self, tmp_path):
        path = tmp_path / "providers.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            build_provider_registry(Settings(providers_file=str(path)))

    def test_invalid_record_rejected(self):
        with pytest.raises(ValidationError):
            build_provider_registry(Settings(providers={"bad": {"algorithm": "md5"}}))

    def test_registry_is_read_only(self):
        registry = build_provider_registry(Settings())
        with pytest.raises(TypeError):
            registry["payment"] = registry["vcs"]

    def test_records_are_frozen(self):
        registry = build_provider_registry(Settings())
        with pytest.raises(ValidationError):
            registry["payment"].secret = "changed"


class TestSettings:
    def test_json_env_values(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SECRETS", '{"payment": "whsec_env"}')
        monkeypatch.setenv("HANDLER_ROUTES", '{"payment:charge.refunded": "billing.handlers:refund"}')
        settings = Settings()
        assert settings.webhook_secrets == {"payment": "whsec_env"}
        assert settings.handler_routes["payment:charge.refunded"] == "billing.handlers:refund"

    def test_retry_defaults(self):
        settings = Settings()
        assert settings.retry_max_attempts == 5
        assert settings.retry_base_delay_seconds == 30.0
        assert settings.dedup_retention_days == 30
