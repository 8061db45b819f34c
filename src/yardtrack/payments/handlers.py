# src/yardtrack/payments/handlers.py
import json, logging
from functools import lru_cache
from yardtrack.common.config import get_settings
from yardtrack.common.events import EventPublisher
from yardtrack.common.http import endpoint, header, raw_body, respond
from yardtrack.common.store import DynamoStore
from yardtrack.payments.webhook import WebhookReconciler, verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


@lru_cache(maxsize=1)
def services():
    settings = get_settings()
    reconciler = WebhookReconciler(DynamoStore(settings), EventPublisher(settings.event_bus_name))
    return settings, reconciler


@endpoint
def square_webhook(event, context):
    settings, reconciler = services()
    body = raw_body(event)
    verify_signature(body, header(event, SIGNATURE_HEADER),
                     settings.square_webhook_signature_key, settings.square_webhook_url)

    # Redelivering a payload we cannot read will not make it readable: acknowledge it.
    try:
        envelope = json.loads(body or "{}")
    except json.JSONDecodeError:
        logger.warning("webhook body is not JSON; acknowledged without processing")
        return respond(200, {"received": True})
    if not isinstance(envelope, dict):
        logger.warning("webhook body is not an object; acknowledged without processing")
        return respond(200, {"received": True})

    logger.info("webhook received: %s", envelope.get("type"))
    # store failures propagate as 500 so Square retries; the writes are idempotent
    reconciler.reconcile(envelope)
    return respond(200, {"received": True})
