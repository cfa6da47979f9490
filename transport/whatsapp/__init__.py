"""WhatsApp Transport Layer - Module Exports

The webhook router is not re-exported here; import it from
transport.whatsapp.webhook (it pulls in the engine wiring).
"""

from .gateway import (
    GatewayResult,
    MessagingGateway,
    StubMessagingGateway,
    WhatsAppCloudGateway,
)
from .media import MediaRelay, StubMediaRelay, WhatsAppMediaRelay
from .normalize import NormalizationError, extract_content, extract_inbound
from .schemas import InboundMessage, WhatsAppWebhookPayload
from .security import (
    ChallengeVerificationError,
    SignatureVerificationError,
    compute_signature,
    verify_signature,
    verify_webhook_challenge,
)

__all__ = [
    # Schemas
    "InboundMessage",
    "WhatsAppWebhookPayload",
    # Normalization
    "extract_inbound",
    "extract_content",
    "NormalizationError",
    # Security
    "verify_signature",
    "verify_webhook_challenge",
    "compute_signature",
    "SignatureVerificationError",
    "ChallengeVerificationError",
    # Gateway
    "MessagingGateway",
    "WhatsAppCloudGateway",
    "StubMessagingGateway",
    "GatewayResult",
    # Media
    "MediaRelay",
    "WhatsAppMediaRelay",
    "StubMediaRelay",
]
