"""
WhatsApp Normalization Tests

Cloud API webhook payloads → InboundEvent.
"""

from datetime import datetime, timezone

import pytest

from transport.whatsapp.normalize import NormalizationError, extract_inbound


def _payload(message, contacts=None):
    value = {"messaging_product": "whatsapp", "messages": [message]}
    if contacts is not None:
        value["contacts"] = contacts
    return {
        "object": "whatsapp_business_account",
        "entry": [{"changes": [{"field": "messages", "value": value}]}],
    }


def _message(**content):
    return {"from": "15551234567", "id": "wamid.in_1", "timestamp": "1707500000", **content}


class TestTextNormalization:
    """Text messages and contact data."""

    def test_text_message(self):
        event = extract_inbound(_payload(
            _message(type="text", text={"body": "Hello"}),
            contacts=[{"wa_id": "15551234567", "profile": {"name": "Ana"}}],
        ))

        assert event.message_id == "wamid.in_1"
        assert event.sender_id == "15551234567"
        assert event.type == "text"
        assert event.text == "Hello"
        assert event.contact_name == "Ana"
        assert event.wa_id == "15551234567"
        assert event.timestamp == datetime.fromtimestamp(1707500000, tz=timezone.utc)

    def test_missing_contacts(self):
        event = extract_inbound(_payload(_message(type="text", text={"body": "Hi"})))

        assert event.contact_name is None
        assert event.wa_id is None

    @pytest.mark.parametrize("contact", [
        {"wa_id": "15551234567", "profile": None},
        {"wa_id": "15551234567"},
    ])
    def test_contact_without_profile(self, contact):
        event = extract_inbound(_payload(_message(type="text", text={"body": "Hi"}), contacts=[contact]))

        assert event.contact_name is None
        assert event.wa_id == "15551234567"

    def test_bad_timestamp_is_dropped(self):
        message = _message(type="text", text={"body": "Hi"})
        message["timestamp"] = "yesterday"

        assert extract_inbound(_payload(message)).timestamp is None


class TestInteractiveNormalization:
    """Button and list replies carry their ids."""

    def test_button_reply(self):
        event = extract_inbound(_payload(_message(
            type="interactive",
            interactive={"type": "button_reply", "button_reply": {"id": "btn_yes", "title": "Yes"}},
        )))

        assert event.button_id == "btn_yes"
        assert event.text == "Yes"
        assert event.list_row_id is None

    def test_list_reply(self):
        event = extract_inbound(_payload(_message(
            type="interactive",
            interactive={"type": "list_reply", "list_reply": {"id": "row_2", "title": "Large"}},
        )))

        assert event.list_row_id == "row_2"
        assert event.text == "Large"

    def test_template_quick_reply(self):
        event = extract_inbound(_payload(_message(
            type="button", button={"payload": "CONFIRM", "text": "Confirm"},
        )))

        assert event.button_id == "CONFIRM"
        assert event.text == "Confirm"


class TestMediaNormalization:
    """Media placeholders, captions and locations."""

    @pytest.mark.parametrize("kind,placeholder", [
        ("image", "[Image]"),
        ("video", "[Video]"),
        ("document", "[Document]"),
        ("sticker", "[Sticker]"),
    ])
    def test_placeholder_without_caption(self, kind, placeholder):
        event = extract_inbound(_payload(_message(type=kind, **{kind: {"id": "media-1"}})))

        assert event.text == placeholder
        assert event.media_id == "media-1"

    def test_caption_wins(self):
        event = extract_inbound(_payload(_message(
            type="image", image={"id": "media-1", "caption": "my receipt"},
        )))

        assert event.text == "my receipt"

    def test_audio_is_always_placeholder(self):
        event = extract_inbound(_payload(_message(type="audio", audio={"id": "voice-1"})))

        assert event.text == "[Audio]"
        assert event.media_id == "voice-1"

    def test_location(self):
        event = extract_inbound(_payload(_message(
            type="location", location={"latitude": 38.72, "longitude": -9.14},
        )))

        assert event.text == "[Location: 38.72, -9.14]"

    def test_unknown_type(self):
        event = extract_inbound(_payload(_message(type="reaction", reaction={"emoji": "👍"})))

        assert event.text == "[reaction]"


class TestEnvelope:
    """Non-message deliveries and malformed payloads."""

    def test_status_update_has_no_message(self):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.out", "status": "read"}]}}]}],
        }
        assert extract_inbound(payload) is None

    def test_empty_entry(self):
        assert extract_inbound({"object": "whatsapp_business_account", "entry": []}) is None

    def test_wrong_object(self):
        with pytest.raises(NormalizationError):
            extract_inbound({"object": "instagram", "entry": []})

    def test_not_a_dict(self):
        with pytest.raises(NormalizationError):
            extract_inbound(["nope"])

    def test_message_without_sender(self):
        payload = _payload({"id": "wamid.x", "type": "text", "text": {"body": "hi"}})
        with pytest.raises(NormalizationError):
            extract_inbound(payload)
