"""
Tests for hookgate/services/event_parser.py — routing-field extraction.
"""
import pytest

from hookgate.services.event_parser import ParsedEvent, extract_path, parse_event
from hookgate.utils.errors import MalformedPayload, ParseError


class TestExtractPath:
    def test_top_level(self):
        assert extract_path({"id": "evt_1"}, "id") == "evt_1"

    def test_nested(self):
        doc = {"data": {"object": {"id": "pi_1"}}}
        assert extract_path(doc, "data.object.id") == "pi_1"

    def test_list_index(self):
        doc = {"items": [{"id": "a"}, {"id": "b"}]}
        assert extract_path(doc, "items.1.id") == "b"

    def test_list_index_out_of_range(self):
        assert extract_path({"items": []}, "items.0") is None

    def test_missing_segment(self):
        assert extract_path({"data": {}}, "data.object.id") is None

    def test_through_scalar(self):
        assert extract_path({"data": "text"}, "data.id") is None

    @pytest.mark.parametrize("path", [None, ""])
    def test_empty_path(self, path):
        assert extract_path({"id": 1}, path) is None


class TestParseEvent:
    def test_payload_paths(self, payment_provider):
        result = parse_event(b'{"id":"evt_1","type":"payment_intent.succeeded"}', payment_provider)
        assert result == ParsedEvent(
            external_event_id="evt_1",
            topic="payment_intent.succeeded",
            payload={"id": "evt_1", "type": "payment_intent.succeeded"},
        )

    def test_header_hints(self, vcs_provider):
        result = parse_event(
            b'{"ref":"refs/heads/main"}', vcs_provider,
            topic_hint="push", event_id_hint="72d3162e-cc78-11e3-81ab-4c9367dc0958",
        )
        assert result.external_event_id == "72d3162e-cc78-11e3-81ab-4c9367dc0958"
        assert result.topic == "push"
        assert result.payload["ref"] == "refs/heads/main"

    def test_event_id_header_preferred_over_payload(self, commerce_provider):
        result = parse_event(
            b'{"id": 820982911946154508}', commerce_provider,
            topic_hint="orders/create", event_id_hint="b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
        )
        assert result.external_event_id == "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043"

    def test_event_id_falls_back_to_payload_when_header_absent(self, commerce_provider):
        result = parse_event(
            b'{"id": 820982911946154508}', commerce_provider, topic_hint="orders/create",
        )
        assert result.external_event_id == "820982911946154508"

    def test_topic_path_preferred_over_hint(self, payment_provider):
        result = parse_event(b'{"id":"evt_1","type":"charge.refunded"}', payment_provider, topic_hint="other")
        assert result.topic == "charge.refunded"

    def test_topic_hint_used_when_path_missing(self, payment_provider):
        result = parse_event(b'{"id":"evt_1"}', payment_provider, topic_hint="charge.refunded")
        assert result.topic == "charge.refunded"

    def test_nested_field_paths(self, payment_provider):
        nested = payment_provider.model_copy(
            update={"event_id_path": "event.id", "topic_path": "event.kind"}
        )
        result = parse_event(b'{"event":{"id":"e-9","kind":"refund"}}', nested)
        assert (result.external_event_id, result.topic) == ("e-9", "refund")

    def test_invalid_json(self, payment_provider):
        with pytest.raises(MalformedPayload):
            parse_event(b"{not json", payment_provider)

    def test_invalid_utf8(self, payment_provider):
        with pytest.raises(MalformedPayload):
            parse_event(b"\xff\xfe\x00", payment_provider)

    @pytest.mark.parametrize("body", [b"[]", b'"text"', b"42", b"null"])
    def test_non_object_document(self, payment_provider, body):
        with pytest.raises(MalformedPayload):
            parse_event(body, payment_provider)

    def test_missing_event_id(self, payment_provider):
        with pytest.raises(MalformedPayload, match="event id"):
            parse_event(b'{"type":"charge.refunded"}', payment_provider)

    def test_missing_topic(self, payment_provider):
        with pytest.raises(MalformedPayload, match="topic"):
            parse_event(b'{"id":"evt_1"}', payment_provider)

    @pytest.mark.parametrize("value", ['""', '"   "', "{}", "[]", "true"])
    def test_unusable_id_values(self, payment_provider, value):
        body = ('{"id":%s,"type":"t"}' % value).encode()
        with pytest.raises(MalformedPayload):
            parse_event(body, payment_provider)

    def test_overlong_topic(self, payment_provider):
        body = ('{"id":"evt_1","type":"%s"}' % ("x" * 256)).encode()
        with pytest.raises(MalformedPayload):
            parse_event(body, payment_provider)

    def test_malformed_payload_is_parse_error(self):
        assert issubclass(MalformedPayload, ParseError)
