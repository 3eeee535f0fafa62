from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse, Response

from relay.dependencies import get_pipeline, get_settings
from relay.webhook.security import is_authentic

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/webhook")
async def verify_webhook(
    request: Request,
    hub_mode: str = Query(alias="hub.mode", default=""),
    hub_verify_token: str = Query(alias="hub.verify_token", default=""),
    hub_challenge: str = Query(alias="hub.challenge", default=""),
) -> Response:
    settings = get_settings(request)
    if hub_mode == "subscribe" and hub_verify_token == settings.whatsapp_verify_token:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(content=hub_challenge)
    logger.warning("WhatsApp webhook verification failed")
    return PlainTextResponse(content="Forbidden", status_code=403)


@router.post("/webhook")
async def incoming_webhook(request: Request) -> Response:
    settings = get_settings(request)
    body = await request.body()

    signature = request.headers.get("X-Hub-Signature-256")
    if not is_authentic(body, signature, settings.whatsapp_app_secret):
        logger.warning("Invalid webhook signature")
        return Response(status_code=200)

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return Response(status_code=200)
    if not isinstance(payload, dict):
        logger.warning("Webhook body is not a JSON object")
        return Response(status_code=200)

    # Acknowledge immediately; intake runs on the webhook queue
    get_pipeline(request).submit_webhook(payload)
    return Response(status_code=200)
