from fastapi import APIRouter, Body

from tellersync.schemas.sync import WebhookAck
from tellersync.services.webhooks import forward_webhook

router = APIRouter(tags=["webhooks"])


@router.post("/teller-webhook", response_model=WebhookAck, response_model_exclude_none=True)
def teller_webhook(payload: dict | None = Body(default=None)):
    # Always acknowledge so Teller does not keep retrying
    return WebhookAck(forwarded=forward_webhook(payload or {}))
