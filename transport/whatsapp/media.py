"""
WhatsApp Media Relay

Inbound media arrives as an opaque WhatsApp media id whose download URL
expires quickly. The relay fetches the bytes and republishes them to the
CDN, returning a durable URL.

Failures are non-fatal: the relay returns None and logs.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from engine.types import ChannelConfig

from .gateway import WA_API_BASE, WA_API_VERSION

logger = logging.getLogger(__name__)


class MediaRelay(ABC):
    """Abstract media republishing boundary."""

    @abstractmethod
    async def relay(self, channel: ChannelConfig, media_id: str) -> Optional[str]:
        """Return a durable URL for the media, or None on failure."""
        raise NotImplementedError


class WhatsAppMediaRelay(MediaRelay):
    """
    Graph API lookup → authenticated download → CDN upload.

    CDN contract: POST {cdn_url}/upload (multipart "file"),
    header X-API-Key, JSON response carrying "url".
    """

    def __init__(
        self,
        cdn_url: str,
        cdn_api_key: str,
        api_base: str = WA_API_BASE,
        api_version: str = WA_API_VERSION,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cdn_url = cdn_url.rstrip("/")
        self.cdn_api_key = cdn_api_key
        self.api_base = api_base.rstrip("/")
        self.api_version = api_version
        self.timeout_s = timeout_s
        self._transport = transport

    async def relay(self, channel: ChannelConfig, media_id: str) -> Optional[str]:
        auth = {"Authorization": f"Bearer {channel.access_token}"}
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout_s
            ) as client:
                meta = await client.get(
                    f"{self.api_base}/{self.api_version}/{media_id}", headers=auth
                )
                meta.raise_for_status()
                info = meta.json()
                source_url = info.get("url")
                if not source_url:
                    logger.warning(f"Media {media_id} has no download URL")
                    return None

                download = await client.get(source_url, headers=auth)
                download.raise_for_status()

                mime_type = info.get("mime_type") or download.headers.get(
                    "content-type", "application/octet-stream"
                )
                extension = mime_type.split("/")[-1].split(";")[0] or "bin"
                upload = await client.post(
                    f"{self.cdn_url}/upload",
                    headers={"X-API-Key": self.cdn_api_key},
                    files={"file": (f"{media_id}.{extension}", download.content, mime_type)},
                )
                upload.raise_for_status()
                durable_url = upload.json().get("url")

        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                f"Media relay failed for {media_id}: {e}",
                extra={"channel_id": channel.id, "media_id": media_id},
            )
            return None

        logger.info(
            f"Media {media_id} relayed",
            extra={"channel_id": channel.id, "media_id": media_id, "url": durable_url},
        )
        return durable_url


class StubMediaRelay(MediaRelay):
    """Deterministic relay for tests: maps ids to fixed URLs, None when unknown."""

    def __init__(self, urls: Optional[Dict[str, str]] = None):
        self.urls = dict(urls or {})
        self.requested = []

    async def relay(self, channel: ChannelConfig, media_id: str) -> Optional[str]:
        self.requested.append(media_id)
        return self.urls.get(media_id)
