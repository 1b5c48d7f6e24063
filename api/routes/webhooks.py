"""
Payment processor webhooks.

Signature verification and dedupe happen in WebhookService; a duplicate is
acknowledged with 200 so the processor stops redelivering.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Request

from api.dependencies import get_services
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.composition import Services


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        if "/" in entry:
            try:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                continue
        elif remote_ip == entry:
            return True
    return False


@router.post("/stripe")
async def stripe_webhook(request: Request, services: Services = Depends(get_services)):
    ct = (request.headers.get("content-type") or "").lower()
    if "application/json" not in ct:
        raise HTTPException(status_code=415, detail="Unsupported content type")

    allowlist = payment_settings.webhook.ip_allowlist
    if allowlist and request.client and not _ip_permitted(request.client.host, allowlist):
        logger.warning("payment_webhook_ip_rejected", remote_ip=request.client.host)
        raise HTTPException(status_code=403, detail="Source address not allowed")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    applied = await services.webhooks.handle(headers, raw_body)
    return success_response(data={"duplicate": not applied}, message="Webhook received")
