"""
WhatsApp Messaging Gateway

Sends outbound messages through the WhatsApp Cloud API.
No formatting intelligence. No retries. No flow logic.

Every send returns a GatewayResult: a message id on success, an error
string otherwise. Callers decide whether an error is fatal.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from engine.types import ChannelConfig

logger = logging.getLogger(__name__)

WA_API_VERSION = "v23.0"
WA_API_BASE = "https://graph.facebook.com"


@dataclass
class GatewayResult:
    """Outcome of a single gateway call."""

    message_id: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None


# ============================================================================
# PAYLOAD BUILDERS (provider wire format)
# ============================================================================

def _envelope(to: str, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": kind,
        kind: body,
    }


def _with_header_footer(
    interactive: Dict[str, Any],
    header_text: Optional[str],
    footer_text: Optional[str],
) -> Dict[str, Any]:
    if header_text:
        interactive["header"] = {"type": "text", "text": header_text}
    if footer_text:
        interactive["footer"] = {"text": footer_text}
    return interactive


def build_text_payload(to: str, text: str) -> Dict[str, Any]:
    return _envelope(to, "text", {"body": text})


def build_media_payload(
    to: str,
    kind: str,
    link: str,
    caption: Optional[str] = None,
    filename: Optional[str] = None,
) -> Dict[str, Any]:
    """image / video / audio / document / sticker by link."""
    media: Dict[str, Any] = {"link": link}
    if caption:
        media["caption"] = caption
    if filename:
        media["filename"] = filename
    return _envelope(to, kind, media)


def build_location_payload(
    to: str,
    latitude: Any,
    longitude: Any,
    name: Optional[str] = None,
    address: Optional[str] = None,
) -> Dict[str, Any]:
    location: Dict[str, Any] = {
        "latitude": str(latitude),
        "longitude": str(longitude),
    }
    if name:
        location["name"] = name
    if address:
        location["address"] = address
    return _envelope(to, "location", location)


def build_contacts_payload(to: str, contacts: List[Dict[str, Any]]) -> Dict[str, Any]:
    cards = []
    for contact in contacts:
        name = contact.get("name") or ""
        cards.append({
            "name": {
                "formatted_name": name,
                "first_name": contact.get("first_name") or name,
                "last_name": contact.get("last_name") or "",
            },
            "phones": [{"phone": contact["phone"], "type": "CELL"}] if contact.get("phone") else [],
            "emails": [{"email": contact["email"], "type": "WORK"}] if contact.get("email") else [],
        })
    payload = _envelope(to, "contacts", cards)
    return payload


def build_buttons_payload(
    to: str,
    body_text: str,
    buttons: List[Dict[str, str]],
    header_text: Optional[str] = None,
    footer_text: Optional[str] = None,
) -> Dict[str, Any]:
    """Reply buttons. WhatsApp allows 3 buttons with titles of 20 chars."""
    interactive = {
        "type": "button",
        "body": {"text": body_text},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": btn["id"], "title": btn["title"][:20]}}
                for btn in buttons[:3]
            ],
        },
    }
    return _envelope(
        to, "interactive", _with_header_footer(interactive, header_text, footer_text)
    )


def build_list_payload(
    to: str,
    body_text: str,
    button_text: str,
    sections: List[Dict[str, Any]],
    header_text: Optional[str] = None,
    footer_text: Optional[str] = None,
) -> Dict[str, Any]:
    """List message. Button 20 chars, titles 24, descriptions 72, 10 rows."""
    wire_sections = []
    for section in sections:
        rows = []
        for row in section.get("rows", [])[:10]:
            wire_row = {"id": row["id"], "title": row["title"][:24]}
            if row.get("description"):
                wire_row["description"] = row["description"][:72]
            rows.append(wire_row)
        wire_sections.append({"title": (section.get("title") or "")[:24], "rows": rows})

    interactive = {
        "type": "list",
        "body": {"text": body_text},
        "action": {"button": button_text[:20], "sections": wire_sections},
    }
    return _envelope(
        to, "interactive", _with_header_footer(interactive, header_text, footer_text)
    )


def build_read_receipt(message_id: str) -> Dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "status": "read",
        "message_id": message_id,
    }


# ============================================================================
# GATEWAY INTERFACE
# ============================================================================

class MessagingGateway(ABC):
    """
    Abstract outbound messaging boundary.

    Flow code depends ONLY on this interface. Implementations never raise
    for provider failures; they return GatewayResult(error=...).
    """

    @abstractmethod
    async def send(self, channel: ChannelConfig, payload: Dict[str, Any]) -> GatewayResult:
        """Deliver one provider-shaped message payload."""
        raise NotImplementedError

    async def send_text(self, channel: ChannelConfig, to: str, text: str) -> GatewayResult:
        return await self.send(channel, build_text_payload(to, text))

    async def send_image(self, channel, to, url, caption=None) -> GatewayResult:
        return await self.send(channel, build_media_payload(to, "image", url, caption))

    async def send_video(self, channel, to, url, caption=None) -> GatewayResult:
        return await self.send(channel, build_media_payload(to, "video", url, caption))

    async def send_audio(self, channel, to, url) -> GatewayResult:
        return await self.send(channel, build_media_payload(to, "audio", url))

    async def send_document(self, channel, to, url, filename=None, caption=None) -> GatewayResult:
        return await self.send(
            channel, build_media_payload(to, "document", url, caption, filename)
        )

    async def send_sticker(self, channel, to, url) -> GatewayResult:
        return await self.send(channel, build_media_payload(to, "sticker", url))

    async def send_location(self, channel, to, latitude, longitude, name=None, address=None) -> GatewayResult:
        return await self.send(
            channel, build_location_payload(to, latitude, longitude, name, address)
        )

    async def send_contact(self, channel, to, contacts) -> GatewayResult:
        return await self.send(channel, build_contacts_payload(to, contacts))

    async def send_buttons(self, channel, to, body_text, buttons, header_text=None, footer_text=None) -> GatewayResult:
        return await self.send(
            channel, build_buttons_payload(to, body_text, buttons, header_text, footer_text)
        )

    async def send_list(self, channel, to, body_text, button_text, sections, header_text=None, footer_text=None) -> GatewayResult:
        return await self.send(
            channel,
            build_list_payload(to, body_text, button_text, sections, header_text, footer_text),
        )

    async def mark_as_read(self, channel: ChannelConfig, message_id: str) -> GatewayResult:
        return await self.send(channel, build_read_receipt(message_id))


class WhatsAppCloudGateway(MessagingGateway):
    """Gateway backed by the Meta Graph API /{phone_number_id}/messages."""

    def __init__(
        self,
        api_base: str = WA_API_BASE,
        api_version: str = WA_API_VERSION,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_version = api_version
        self.timeout_s = timeout_s
        self._transport = transport  # injectable for tests

    def endpoint(self, channel: ChannelConfig) -> str:
        return f"{self.api_base}/{self.api_version}/{channel.phone_number_id}/messages"

    async def send(self, channel: ChannelConfig, payload: Dict[str, Any]) -> GatewayResult:
        headers = {
            "Authorization": f"Bearer {channel.access_token}",
            "Content-Type": "application/json",
        }
        recipient = payload.get("to")

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.endpoint(channel),
                    json=payload,
                    headers=headers,
                    timeout=self.timeout_s,
                )
        except httpx.RequestError as e:
            logger.error(
                f"WhatsApp request failed: {e}",
                extra={"channel_id": channel.id, "recipient": recipient},
            )
            return GatewayResult(error=f"HTTP request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or "error" in body:
            error = body.get("error", {}) if isinstance(body, dict) else {}
            detail = error.get("message") if isinstance(error, dict) else None
            logger.error(
                f"WhatsApp API error: {response.status_code} - {detail or response.text}",
                extra={
                    "channel_id": channel.id,
                    "recipient": recipient,
                    "status_code": response.status_code,
                },
            )
            return GatewayResult(
                error=f"WhatsApp API returned {response.status_code}: {detail or 'unknown error'}",
                raw=body if isinstance(body, dict) else {},
            )

        message_id = None
        messages = body.get("messages") or []
        if messages:
            message_id = messages[0].get("id")

        logger.info(
            f"Message sent to {recipient}" if recipient else "Read receipt sent",
            extra={"channel_id": channel.id, "recipient": recipient, "response_id": message_id},
        )
        return GatewayResult(message_id=message_id, raw=body)


class StubMessagingGateway(MessagingGateway):
    """
    Deterministic fake gateway for testing and CI.

    Records every payload. Kinds listed in `fail_kinds` return an error.
    """

    def __init__(self, fail_kinds: Optional[List[str]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_kinds = set(fail_kinds or [])
        self._counter = 0

    async def send(self, channel: ChannelConfig, payload: Dict[str, Any]) -> GatewayResult:
        kind = payload.get("type") or payload.get("status")
        if kind in self.fail_kinds:
            return GatewayResult(error=f"stub failure for {kind}")
        self.sent.append(payload)
        self._counter += 1
        return GatewayResult(message_id=f"wamid.stub_{self._counter}")

    def messages(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """Outbound messages (read receipts excluded), optionally by type."""
        return [
            p for p in self.sent
            if "to" in p and (kind is None or p.get("type") == kind)
        ]

    def texts(self) -> List[str]:
        return [p["text"]["body"] for p in self.messages("text")]
