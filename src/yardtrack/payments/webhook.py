# src/yardtrack/payments/webhook.py
import base64, hashlib, hmac, logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from yardtrack.common.errors import InvalidSignature
from yardtrack.payments.square import field

logger = logging.getLogger(__name__)

SERVICE_FEE_RATE = Decimal("0.035")
SALES_TAX_RATE = Decimal("0.0825")
COMMISSION_RATE = Decimal("0.03")

COMPLETED_EVENT = "payment.completed"
PAYMENT_EVENTS = {"payment.created", "payment.updated"}
YARD_SALE_PREFIXES = ("YTP-", "YS-")
CENT = Decimal("0.01")


def verify_signature(body: str, signature: str | None, key: str, url: str = "") -> None:
    """HMAC-SHA256 (base64) of notification URL + raw body; no key configured, no check."""
    if not key:
        return
    if not signature:
        raise InvalidSignature("Missing signature")
    digest = hmac.new(key.encode("utf-8"), (url + body).encode("utf-8"), hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if not hmac.compare_digest(expected, signature.strip()):
        raise InvalidSignature()


def completed_payment(envelope: dict) -> dict | None:
    """The payment object of a payment-completed notification, else None."""
    payment = ((envelope.get("data") or {}).get("object") or {}).get("payment")
    if not isinstance(payment, dict):
        return None
    kind = envelope.get("type")
    if kind == COMPLETED_EVENT:
        return payment
    if kind in PAYMENT_EVENTS and payment.get("status") == "COMPLETED":
        return payment
    return None


def is_yard_sale(payment: dict) -> bool:
    note = payment.get("note") or ""
    reference = field(payment, "reference_id", "referenceId", "")
    return "Yard Sale" in note or reference.startswith(YARD_SALE_PREFIXES)


def parse_note(note: str | None) -> tuple[str, str]:
    """(customer, salesperson) from "YTP Yard Sale | Customer | Salesperson"
    or the older "Yard Sale - Customer - Salesperson"."""
    if not note:
        return "Walk-in", "Unknown"
    parts = [p.strip() for p in (note.split("|") if "|" in note else note.split(" - "))]
    salesperson = parts[-1] if len(parts) >= 2 and parts[-1] else "Unknown"
    customer = parts[-2] if len(parts) >= 3 and parts[-2] else "Walk-in"
    return customer, salesperson


def reverse_subtotal(total: Decimal) -> Decimal:
    return total / (1 + SERVICE_FEE_RATE) / (1 + SALES_TAX_RATE)


@dataclass(frozen=True)
class Commission:
    total: Decimal
    subtotal: Decimal
    amount: Decimal


def compute_commission(total_cents: int) -> Commission:
    total = (Decimal(total_cents) / 100).quantize(CENT)
    subtotal = reverse_subtotal(total)
    return Commission(
        total=total,
        subtotal=subtotal.quantize(CENT, rounding=ROUND_HALF_UP),
        amount=(subtotal * COMMISSION_RATE).quantize(CENT, rounding=ROUND_HALF_UP),
    )


class WebhookReconciler:
    """Turns completed yard-sale payments into sale and commission records.

    Both writes are keyed by the Square payment id, so redelivered
    notifications and the synchronous order path land on the same items.
    """

    def __init__(self, store, bus=None):
        self.store = store
        self.bus = bus

    def reconcile(self, envelope: dict) -> dict:
        payment = completed_payment(envelope)
        if payment is None:
            logger.info("webhook %s ignored: not a completed payment", envelope.get("type"))
            return {"recorded": False, "reason": "not_completed_payment"}
        if not is_yard_sale(payment):
            logger.info("payment %s ignored: not a yard sale", payment.get("id"))
            return {"recorded": False, "reason": "not_yard_sale"}
        payment_id = payment.get("id")
        if not payment_id:
            logger.warning("completed yard-sale payment without id ignored")
            return {"recorded": False, "reason": "missing_payment_id"}

        customer, salesperson = parse_note(payment.get("note"))
        money = field(payment, "amount_money", "amountMoney", {})
        commission = compute_commission(int(money.get("amount") or 0))
        created_at = field(payment, "created_at", "createdAt") or _now()
        now = _now()

        self.store.upsert_sale(payment_id, {
            "providerStatus": payment.get("status") or "COMPLETED",
            "totalAmount": commission.total,
            "commission": commission.amount,
            "locationId": field(payment, "location_id", "locationId"),
            "reconciledAt": now,
        }, defaults={
            "paymentId": payment_id,
            "orderType": "yard_sale",
            "subtotal": commission.subtotal,
            "salesperson": salesperson,
            "customerName": customer,
            "receiptUrl": field(payment, "receipt_url", "receiptUrl"),
            "createdAt": created_at,
            "recordedAt": now,
            "source": "yardtrackpro",
        })
        written = self.store.put_commission({
            "saleId": payment_id,
            "salesperson": salesperson,
            "amount": commission.amount,
            "saleType": "yard_sale",
            "saleTotal": commission.total,
            "date": created_at,
            "recordedAt": now,
        })
        if not written:
            logger.info("payment %s already reconciled", payment_id)
            return {"recorded": False, "reason": "duplicate", "paymentId": payment_id}

        logger.info("recorded yard sale %s: $%s by %s, commission $%s",
                    payment_id, commission.total, salesperson, commission.amount)
        if self.bus is not None:
            self.bus.publish("yardtrack.payments", "SaleRecorded", {
                "paymentId": payment_id, "salesperson": salesperson,
                "total": commission.total, "commission": commission.amount,
            })
        return {"recorded": True, "paymentId": payment_id}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
