"""
Teller webhook relay.

Forwards Teller webhook payloads to an n8n workflow (or any HTTP endpoint).
Failures are logged and reported back to the caller as ``False`` so a relay
outage never makes Teller retry the delivery.
"""

import logging

import requests

from tellersync.core.config import settings

logger = logging.getLogger(__name__)


def forward_webhook(payload: dict) -> bool | None:
    """
    POST `payload` to the configured n8n webhook.

    Returns None when no target is configured, True on a 2xx answer and
    False on any error (logs the reason).
    """
    if not settings.n8n_webhook_url:
        return None
    try:
        resp = requests.post(
            settings.n8n_webhook_url,
            json=payload,
            timeout=10,
        )
        if resp.status_code < 300:
            return True
        logger.warning(
            "n8n webhook returned %d: %s", resp.status_code, resp.text[:200]
        )
        return False
    except requests.RequestException as exc:
        logger.warning("Teller webhook forward failed: %s", exc)
        return False
