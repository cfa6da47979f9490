"""
Message send executors.

Each send interpolates its templated fields, hands the rendered payload to
the messaging gateway and continues on the default edge. A gateway error
fails the node.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from engine.errors import GatewayError
from engine.executors.base import NodeContext, NodeOutcome, executor
from engine.node_config import (
    MarkAsReadConfig,
    SendAudioConfig,
    SendButtonsConfig,
    SendContactConfig,
    SendDocumentConfig,
    SendImageConfig,
    SendListConfig,
    SendLocationConfig,
    SendStampCardConfig,
    SendStickerConfig,
    SendTextConfig,
    SendTextEnhancedConfig,
    SendVideoConfig,
)
from engine.types import Node
from engine.variables import interpolate

logger = logging.getLogger(__name__)


def _optional(template: Optional[str], ctx: NodeContext) -> Optional[str]:
    rendered = interpolate(template, ctx.variables) if template else ""
    return rendered or None


def _sent(node: Node, result, **log) -> NodeOutcome:
    if not result.ok:
        raise GatewayError(
            f"{node.type} failed: {result.error}",
            node_id=node.id,
            node_type=node.type,
        )
    log["message_id"] = result.message_id
    return NodeOutcome(
        deltas={"last_sent_message_id": result.message_id},
        log=log,
    )


def compose_enhanced_text(body: str, header: Optional[str], footer: Optional[str]) -> str:
    """Header in bold, footer in italics, separated by blank lines."""
    parts = []
    if header:
        parts.append(f"*{header}*")
    parts.append(body)
    if footer:
        parts.append(f"_{footer}_")
    return "\n\n".join(parts)


@executor("sendText")
async def send_text(node: Node, config: SendTextConfig, ctx: NodeContext) -> NodeOutcome:
    text = interpolate(config.message, ctx.variables)
    result = await ctx.gateway.send_text(ctx.channel, ctx.recipient, text)
    return _sent(node, result, text=text)


@executor("sendTextEnhanced")
async def send_text_enhanced(
    node: Node, config: SendTextEnhancedConfig, ctx: NodeContext
) -> NodeOutcome:
    text = compose_enhanced_text(
        interpolate(config.body_text, ctx.variables),
        _optional(config.header_text, ctx),
        _optional(config.footer_text, ctx),
    )
    result = await ctx.gateway.send_text(ctx.channel, ctx.recipient, text)
    return _sent(node, result, text=text)


@executor("sendImage")
async def send_image(node: Node, config: SendImageConfig, ctx: NodeContext) -> NodeOutcome:
    url = interpolate(config.image_url, ctx.variables)
    caption = _optional(config.caption, ctx)
    result = await ctx.gateway.send_image(ctx.channel, ctx.recipient, url, caption)
    return _sent(node, result, url=url, caption=caption)


@executor("sendVideo")
async def send_video(node: Node, config: SendVideoConfig, ctx: NodeContext) -> NodeOutcome:
    url = interpolate(config.video_url, ctx.variables)
    caption = _optional(config.caption, ctx)
    result = await ctx.gateway.send_video(ctx.channel, ctx.recipient, url, caption)
    return _sent(node, result, url=url, caption=caption)


@executor("sendAudio")
async def send_audio(node: Node, config: SendAudioConfig, ctx: NodeContext) -> NodeOutcome:
    url = interpolate(config.audio_url, ctx.variables)
    result = await ctx.gateway.send_audio(ctx.channel, ctx.recipient, url)
    return _sent(node, result, url=url)


@executor("sendDocument")
async def send_document(node: Node, config: SendDocumentConfig, ctx: NodeContext) -> NodeOutcome:
    url = interpolate(config.document_url, ctx.variables)
    filename = _optional(config.filename, ctx)
    caption = _optional(config.caption, ctx)
    result = await ctx.gateway.send_document(ctx.channel, ctx.recipient, url, filename, caption)
    return _sent(node, result, url=url, filename=filename)


@executor("sendSticker")
async def send_sticker(node: Node, config: SendStickerConfig, ctx: NodeContext) -> NodeOutcome:
    url = interpolate(config.sticker_url, ctx.variables)
    result = await ctx.gateway.send_sticker(ctx.channel, ctx.recipient, url)
    return _sent(node, result, url=url)


@executor("sendLocation")
async def send_location(node: Node, config: SendLocationConfig, ctx: NodeContext) -> NodeOutcome:
    latitude = interpolate(str(config.latitude), ctx.variables)
    longitude = interpolate(str(config.longitude), ctx.variables)
    result = await ctx.gateway.send_location(
        ctx.channel,
        ctx.recipient,
        latitude,
        longitude,
        _optional(config.name, ctx),
        _optional(config.address, ctx),
    )
    return _sent(node, result, latitude=latitude, longitude=longitude)


@executor("sendContact")
async def send_contact(node: Node, config: SendContactConfig, ctx: NodeContext) -> NodeOutcome:
    contacts = [
        {
            "name": interpolate(contact.name, ctx.variables),
            "first_name": _optional(contact.first_name, ctx),
            "last_name": _optional(contact.last_name, ctx),
            "phone": _optional(contact.phone, ctx),
            "email": _optional(contact.email, ctx),
        }
        for contact in config.contacts
    ]
    result = await ctx.gateway.send_contact(ctx.channel, ctx.recipient, contacts)
    return _sent(node, result, contacts=len(contacts))


@executor("sendButtons")
async def send_buttons(node: Node, config: SendButtonsConfig, ctx: NodeContext) -> NodeOutcome:
    body = interpolate(config.body_text, ctx.variables)
    buttons = [
        {"id": button.id, "title": interpolate(button.title, ctx.variables)}
        for button in config.buttons
    ]
    result = await ctx.gateway.send_buttons(
        ctx.channel,
        ctx.recipient,
        body,
        buttons,
        _optional(config.header_text, ctx),
        _optional(config.footer_text, ctx),
    )
    return _sent(node, result, text=body, buttons=[b["id"] for b in buttons])


@executor("sendList")
async def send_list(node: Node, config: SendListConfig, ctx: NodeContext) -> NodeOutcome:
    body = interpolate(config.body_text, ctx.variables)
    sections = [
        {
            "title": interpolate(section.title, ctx.variables),
            "rows": [
                {
                    "id": row.id,
                    "title": interpolate(row.title, ctx.variables),
                    "description": _optional(row.description, ctx),
                }
                for row in section.rows
            ],
        }
        for section in config.sections
    ]
    result = await ctx.gateway.send_list(
        ctx.channel,
        ctx.recipient,
        body,
        config.button_text or "View Options",
        sections,
        _optional(config.header_text, ctx),
        _optional(config.footer_text, ctx),
    )
    return _sent(node, result, text=body, sections=len(sections))


def build_stamp_card_url(config: SendStampCardConfig, ctx: NodeContext) -> str:
    """Image URL on the stamp card renderer (GET /generate-card)."""
    server = (config.stamp_server_url or ctx.settings.stamp_server_url).rstrip("/")
    params = {
        "n": interpolate(str(config.stamp_count), ctx.variables) or "0",
        "name": interpolate(config.customer_name, ctx.variables),
    }
    if config.use_template and config.template_id:
        params["template"] = config.template_id
    elif config.use_custom_template and config.custom_html:
        params["html"] = interpolate(config.custom_html, ctx.variables)
        if config.custom_style:
            params["style"] = config.custom_style
    title = _optional(config.title, ctx)
    if title:
        params["title"] = title
    subtitle = _optional(config.subtitle, ctx)
    if subtitle:
        params["subtitle"] = subtitle
    return f"{server}/generate-card?{urlencode(params)}"


@executor("sendStampCard")
async def send_stamp_card(node: Node, config: SendStampCardConfig, ctx: NodeContext) -> NodeOutcome:
    url = build_stamp_card_url(config, ctx)
    caption = _optional(config.caption, ctx)

    result = await ctx.gateway.send_image(ctx.channel, ctx.recipient, url, caption)
    if result.ok or not caption:
        return _sent(node, result, url=url, caption=caption)

    # Image rejected: the caption alone still tells the customer their count
    logger.warning(
        f"Stamp card image failed, sending caption as text: {result.error}",
        extra={"execution_id": ctx.execution.id, "node_id": node.id},
    )
    fallback = await ctx.gateway.send_text(ctx.channel, ctx.recipient, caption)
    return _sent(node, fallback, url=url, caption=caption, fallback=True)


@executor("markAsRead")
async def mark_as_read(node: Node, config: MarkAsReadConfig, ctx: NodeContext) -> NodeOutcome:
    if ctx.event is None:
        return NodeOutcome(log={"skipped": "no inbound message"})
    result = await ctx.gateway.mark_as_read(ctx.channel, ctx.event.message_id)
    if not result.ok:
        logger.warning(
            f"markAsRead failed: {result.error}",
            extra={"execution_id": ctx.execution.id, "node_id": node.id},
        )
    return NodeOutcome(log={"message_id": ctx.event.message_id, "ok": result.ok})
