"""
WhatsApp Input Normalization

PURE CONVERSION - NO ENGINE LOGIC

Converts a Cloud API webhook payload into the engine's InboundEvent.
- TEXT: body as-is
- INTERACTIVE: button/list reply id plus its title as text
- MEDIA: caption, or a bracketed placeholder ("[Image]"), plus the media id
- LOCATION: "[Location: lat, lng]"
- anything else: "[<type>]"

Status callbacks (deliveries, reads) carry no message and normalize to None.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import ValidationError

from engine.types import InboundEvent
from .schemas import WHATSAPP_OBJECT, InboundMessage, WhatsAppWebhookPayload

MEDIA_PLACEHOLDERS = {
    "image": "[Image]",
    "video": "[Video]",
    "audio": "[Audio]",
    "document": "[Document]",
    "sticker": "[Sticker]",
}


class NormalizationError(Exception):
    """Payload is not a WhatsApp webhook or is malformed."""
    pass


def _timestamp(raw: Optional[str]) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def extract_content(message: InboundMessage) -> dict:
    """
    Readable text plus structured reply ids for one message.

    Returns a dict with keys text, button_id, list_row_id, media_id.
    """
    content = {"text": None, "button_id": None, "list_row_id": None, "media_id": None}
    message_type = message.type

    if message_type == "text":
        content["text"] = message.text.body if message.text else ""

    elif message_type == "interactive":
        interactive = message.interactive
        if interactive and interactive.type == "button_reply" and interactive.button_reply:
            content["button_id"] = interactive.button_reply.id
            content["text"] = interactive.button_reply.title
        elif interactive and interactive.type == "list_reply" and interactive.list_reply:
            content["list_row_id"] = interactive.list_reply.id
            content["text"] = interactive.list_reply.title

    elif message_type == "button":
        # Template quick-reply: payload is the button id
        if message.button:
            content["button_id"] = message.button.payload
            content["text"] = message.button.text

    elif message_type in MEDIA_PLACEHOLDERS:
        media = getattr(message, message_type)
        caption = media.caption if media and message_type != "audio" else None
        content["text"] = caption or MEDIA_PLACEHOLDERS[message_type]
        content["media_id"] = media.id if media else None

    elif message_type == "location":
        location = message.location
        lat = location.latitude if location else None
        lng = location.longitude if location else None
        content["text"] = f"[Location: {lat}, {lng}]"

    else:
        content["text"] = f"[{message_type}]"

    return content


def extract_inbound(
    payload: Union[dict, WhatsAppWebhookPayload],
) -> Optional[InboundEvent]:
    """
    Convert a webhook payload into an InboundEvent.

    Only entry[0].changes[0].value.messages[0] and contacts[0] are read.

    Returns:
        InboundEvent, or None when the payload carries no message

    Raises:
        NormalizationError: not a WhatsApp business account payload, or malformed
    """
    if isinstance(payload, WhatsAppWebhookPayload):
        parsed = payload
    else:
        if not isinstance(payload, dict) or payload.get("object") != WHATSAPP_OBJECT:
            raise NormalizationError("Not a WhatsApp webhook")
        try:
            parsed = WhatsAppWebhookPayload.model_validate(payload)
        except ValidationError as e:
            raise NormalizationError(f"Invalid payload structure: {e.error_count()} error(s)")

    if not parsed.entry or not parsed.entry[0].changes:
        return None
    value = parsed.entry[0].changes[0].value
    if not value.messages:
        return None

    message = value.messages[0]
    contact = value.contacts[0] if value.contacts else None
    content = extract_content(message)

    return InboundEvent(
        message_id=message.id,
        sender_id=message.from_,
        type=message.type,
        text=content["text"],
        contact_name=contact.profile.name if contact and contact.profile else None,
        wa_id=contact.wa_id if contact else None,
        button_id=content["button_id"],
        list_row_id=content["list_row_id"],
        timestamp=_timestamp(message.timestamp),
        media_id=content["media_id"],
        raw=message.model_dump(by_alias=True, exclude_none=True),
    )
