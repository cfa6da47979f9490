"""
WhatsApp Webhook Receiver

FastAPI router for per-channel WhatsApp webhooks plus the sweep trigger.

Response policy (Meta retries anything that is not a 2xx):
- duplicates, unmatched messages and failed flows -> 200
- unknown channel -> 404
- payload that is not a WhatsApp webhook -> 400
- bad signature / verify token -> 403
- anything unexpected -> generic 500, no internals
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from engine.errors import ConfigNotFound
from infra.bootstrap import EngineBootstrap

from .normalize import NormalizationError
from .security import (
    SIGNATURE_HEADER,
    ChallengeVerificationError,
    SignatureVerificationError,
    verify_signature,
    verify_webhook_challenge,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WhatsApp Transport"])


def get_engine() -> EngineBootstrap:
    """Dependency: the process-wide engine wiring."""
    return EngineBootstrap.get_instance()


# ============================================================================
# WEBHOOK CHALLENGE (Setup only)
# ============================================================================

@router.get("/webhook/{channel_id}", response_class=PlainTextResponse)
async def whatsapp_webhook_challenge(
    channel_id: str,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    engine: EngineBootstrap = Depends(get_engine),
) -> PlainTextResponse:
    """
    Verify webhook subscription challenge from Meta.

    The verify token is compared with the one stored on the channel and
    the challenge is echoed back verbatim as plain text.

    Raises:
        HTTPException(403): Invalid mode or token
        HTTPException(404): Unknown channel
    """
    if hub_mode != "subscribe":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid mode")

    channel = engine.store.load_config(channel_id)
    if channel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Config not found")

    try:
        challenge = verify_webhook_challenge(
            hub_mode, hub_verify_token, hub_challenge, channel.verify_token
        )
    except ChallengeVerificationError as e:
        logger.warning(f"Webhook challenge rejected for {channel_id}: {e}", extra={"channel_id": channel_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid verify token")

    logger.info(f"Webhook verified for channel {channel_id}", extra={"channel_id": channel_id})
    return PlainTextResponse(challenge, status_code=status.HTTP_200_OK)


# ============================================================================
# WEBHOOK RECEIVER (Message processing)
# ============================================================================

@router.post("/webhook/{channel_id}")
async def whatsapp_webhook_receiver(
    channel_id: str,
    request: Request,
    engine: EngineBootstrap = Depends(get_engine),
) -> dict:
    """
    Receive one WhatsApp webhook delivery.

    Flow:
    1. Parse JSON body (400 if invalid)
    2. Resolve channel (404 if unknown or inactive)
    3. Verify signature when an app secret is configured (403 if invalid)
    4. Hand the payload to the orchestrator

    Returns:
        {"status": "ok", "result": <orchestrator status>}
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    orchestrator = engine.orchestrator
    try:
        channel = orchestrator.load_channel(channel_id)
    except ConfigNotFound:
        logger.error(f"Config not found or inactive: {channel_id}", extra={"channel_id": channel_id})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Config not found")

    # Security boundary
    app_secret = channel.app_secret or engine.config.app_secret
    if app_secret:
        try:
            verify_signature(body, request.headers.get(SIGNATURE_HEADER), app_secret)
        except SignatureVerificationError as e:
            logger.warning(f"Signature verification failed: {e}", extra={"channel_id": channel_id})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Signature verification failed")

    try:
        result = await orchestrator.handle(channel_id, payload)
    except ConfigNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Config not found")
    except NormalizationError as e:
        logger.warning(f"Rejected webhook payload: {e}", extra={"channel_id": channel_id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Not a WhatsApp webhook")
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True, extra={"channel_id": channel_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")

    return {"status": "ok", "result": result.status}


# ============================================================================
# SWEEP (deferred delays and wait timeouts)
# ============================================================================

@router.post("/internal/sweep")
async def run_sweep(
    x_sweep_token: Optional[str] = Header(None),
    engine: EngineBootstrap = Depends(get_engine),
) -> dict:
    """
    Resume due delays and expire timed-out waits.

    Meant for a periodic external caller (cron). Requires the X-Sweep-Token
    header to equal SWEEP_TOKEN; disabled when no token is configured.
    """
    expected = engine.config.sweep_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sweep disabled")
    if x_sweep_token != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid sweep token")

    report = await engine.sweeper.run()
    return {"status": "ok", **report.to_dict()}
