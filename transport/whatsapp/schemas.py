"""
WhatsApp Transport Layer - Pydantic Schemas

PURE DATA MODELS - NO LOGIC
The subset of the Cloud API webhook payload the engine reads.
Unknown fields are kept (extra="allow"); Meta adds fields without notice.

ref: https://developers.facebook.com/docs/whatsapp/cloud-api/webhooks/payload-examples
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_OBJECT = "whatsapp_business_account"


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ============================================================================
# MESSAGE CONTENT
# ============================================================================

class TextContent(_Lenient):
    body: str = ""


class MediaContent(_Lenient):
    """image / video / audio / document / sticker."""
    id: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


class LocationContent(_Lenient):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    name: Optional[str] = None
    address: Optional[str] = None


class ReplyContent(_Lenient):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class InteractiveContent(_Lenient):
    type: Optional[str] = None  # "button_reply" | "list_reply"
    button_reply: Optional[ReplyContent] = None
    list_reply: Optional[ReplyContent] = None


class ButtonContent(_Lenient):
    """Quick-reply button on a template message."""
    payload: Optional[str] = None
    text: Optional[str] = None


class InboundMessage(_Lenient):
    """A single WhatsApp message (value.messages[0])."""
    from_: str = Field(..., alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "unknown"

    text: Optional[TextContent] = None
    interactive: Optional[InteractiveContent] = None
    button: Optional[ButtonContent] = None
    image: Optional[MediaContent] = None
    video: Optional[MediaContent] = None
    audio: Optional[MediaContent] = None
    document: Optional[MediaContent] = None
    sticker: Optional[MediaContent] = None
    location: Optional[LocationContent] = None


# ============================================================================
# ENVELOPE
# ============================================================================

class ContactProfile(_Lenient):
    name: Optional[str] = None


class ContactObject(_Lenient):
    wa_id: Optional[str] = None
    profile: Optional[ContactProfile] = None


class ChangeValue(_Lenient):
    messaging_product: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    contacts: List[ContactObject] = Field(default_factory=list)
    messages: List[InboundMessage] = Field(default_factory=list)
    statuses: List[dict] = Field(default_factory=list)


class Change(_Lenient):
    field: Optional[str] = None
    value: ChangeValue = Field(default_factory=ChangeValue)


class Entry(_Lenient):
    id: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)


class WhatsAppWebhookPayload(_Lenient):
    """Full WhatsApp webhook payload."""

    object: str = Field(..., description="Always 'whatsapp_business_account'")
    entry: List[Entry] = Field(default_factory=list)
