# src/yardtrack/inventory/handlers.py
import logging, uuid
from functools import lru_cache
from yardtrack.common.config import get_settings
from yardtrack.common.errors import ValidationError
from yardtrack.common.events import EventPublisher
from yardtrack.common.http import endpoint, parse_json, raw_body, respond
from yardtrack.common.store import DynamoStore
from yardtrack.inventory.ledger import StockLedger, utcnow

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def services():
    settings = get_settings()
    store = DynamoStore(settings)
    return store, StockLedger(store), EventPublisher(settings.event_bus_name)


@endpoint
def adjust(event, context):
    body = parse_json(raw_body(event))
    action, product_id, tons = body.get("action"), body.get("productId"), body.get("tons")
    if not action or not product_id or tons is None:
        raise ValidationError("Missing required fields: action, productId, tons")

    store, ledger, bus = services()
    if action == "increase":
        return _increase(store, ledger, bus, product_id, tons, body.get("ticketData") or {})
    if action == "decrease":
        return _decrease(store, ledger, bus, product_id, tons, body.get("saleData") or {})
    raise ValidationError('Invalid action. Use "increase" or "decrease"')


def _increase(store, ledger, bus, product_id, tons, ticket):
    change = ledger.increase(product_id, tons)
    # Inbound ticket log; stock stays increased even if this write fails
    ticket_id = store.put_inbound_ticket({
        "productId": change.product_id,
        "tons": change.tons,
        "vendor": ticket.get("vendor") or "Unknown",
        "material": ticket.get("material") or change.product_id,
        "ticketNumber": ticket.get("ticketNumber") or "",
        "truck": ticket.get("truck") or "",
        "date": ticket.get("date") or utcnow()[:10],
        "capturedBy": ticket.get("capturedBy") or "Unknown",
        "capturedAt": utcnow(),
        "source": "yardtrackpro",
    })
    bus.publish("yardtrack.inventory", "InventoryIncreased", {
        "productId": change.product_id, "tons": change.tons,
        "newStock": change.new_stock, "ticketId": ticket_id,
    })
    return respond(200, {
        "success": True,
        "action": "increase",
        "productId": change.product_id,
        "tons": change.tons,
        "newStock": change.new_stock,
        "ticketId": ticket_id,
        "message": f"Added {change.tons} tons to {change.product_id}",
    })


def _decrease(store, ledger, bus, product_id, tons, sale):
    payment_id = sale.get("paymentId")
    if not payment_id:
        change = ledger.decrease(product_id, tons)
        sale_id = f"manual-{uuid.uuid4()}"
    else:
        # keyed by the card payment so the order, webhook and this log converge on one item
        change, sale_id = ledger.decrease_for_sale(payment_id, product_id, tons), payment_id
        if change is None:
            return respond(200, {
                "success": True,
                "action": "decrease",
                "status": "duplicate",
                "productId": product_id,
                "saleId": sale_id,
                "message": f"Sale {sale_id} already depleted {product_id}",
            })

    log = {
        "productId": change.product_id,
        "tons": change.tons,
        "material": sale.get("material") or change.product_id,
        "quantity": sale.get("quantity") or 0,
        "subtotal": sale.get("subtotal") or 0,
        "serviceFee": sale.get("serviceFee") or 0,
        "salesTax": sale.get("salesTax") or 0,
        "total": sale.get("total") or 0,
        "customer": sale.get("customer") or {},
        "paymentMethod": sale.get("paymentMethod") or "card",
        "paymentId": payment_id,
        "salesperson": sale.get("salesperson") or "Unknown",
        "createdAt": utcnow(),
        "source": "yardtrackpro",
    }
    if payment_id:
        # the order may already hold this item: only what the caller supplied
        log = {k: v for k, v in log.items()
               if k in ("productId", "tons", "createdAt", "source") or sale.get(k)}
    store.upsert_sale(sale_id, {"updatedAt": utcnow()}, defaults=log)
    bus.publish("yardtrack.inventory", "InventoryDepleted", {
        "productId": change.product_id, "tons": change.tons,
        "newStock": change.new_stock, "saleId": sale_id,
    })
    return respond(200, {
        "success": True,
        "action": "decrease",
        "productId": change.product_id,
        "tons": change.tons,
        "previousStock": change.previous_stock,
        "newStock": change.new_stock,
        "saleId": sale_id,
        "message": f"Removed {change.tons} tons from {change.product_id}",
    })
