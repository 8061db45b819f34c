# src/yardtrack/orders/processor.py
import logging, secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from yardtrack.common.errors import (
    AppError, InsufficientInventory, InsufficientStock, PaymentError, ValidationError, round_tons,
)
from yardtrack.inventory.ledger import to_tons
from yardtrack.payments.square import Payment
from yardtrack.payments.webhook import reverse_subtotal

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class OrderState(str, Enum):
    RECEIVED = "received"
    STOCK_CHECKED = "stock_checked"
    DELIVERY_CHECKED = "delivery_checked"
    CHARGED = "charged"
    RECORDED = "recorded"
    STOCK_DEPLETED = "stock_depleted"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class OrderOutcome:
    order_number: str
    state: OrderState = OrderState.RECEIVED
    payment: Payment | None = None
    shortfalls: list[dict] = field(default_factory=list)
    recorded: bool = True
    history: list[OrderState] = field(default_factory=lambda: [OrderState.RECEIVED])

    def advance(self, state: OrderState, reason: str = "") -> None:
        logger.info("order %s: %s -> %s%s", self.order_number, self.state.value, state.value,
                    f" ({reason})" if reason else "")
        self.state = state
        self.history.append(state)

    def to_body(self) -> dict:
        body = {
            "success": True,
            "orderNumber": self.order_number,
            "paymentId": self.payment.id,
            "status": self.payment.status,
            "receiptUrl": self.payment.receipt_url,
            "createdAt": self.payment.created_at,
        }
        if self.shortfalls:
            body["shortfalls"] = self.shortfalls
        if not self.recorded:
            body["recorded"] = False
        return body


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def order_number(now: datetime) -> str:
    return f"YTP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _amount(value) -> Decimal | None:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() and amount > 0 else None


def stock_lines(items) -> dict[str, tuple[str, Decimal]]:
    """productId -> (display name, total tons) for items that draw on stock."""
    if items is None:
        return {}
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValidationError("items must be a list of objects")
    lines = {}
    for item in items:
        pid, tons = item.get("productId"), item.get("tons")
        if not pid or tons in (None, "", 0):
            continue
        tons = to_tons(tons, "items[].tons")
        label = item.get("material") or item.get("product") or pid
        prev = lines.get(pid)
        lines[pid] = (prev[0] if prev else label, (prev[1] if prev else 0) + tons)
    return lines


class OrderProcessor:
    """Validate, check stock, check trucks, charge, record, deplete.

    Everything before the charge fails closed. After the charge nothing is
    undone: a depletion that loses a race is logged and announced as a
    DepletionShortfall for manual reconciliation, and the order still succeeds.
    """

    def __init__(self, store, ledger, capacity, payments, bus=None, clock=utcnow):
        self.store = store
        self.ledger = ledger
        self.capacity = capacity
        self.payments = payments
        self.bus = bus
        self.clock = clock

    def submit(self, request: dict) -> OrderOutcome:
        now = self.clock()
        outcome = OrderOutcome(order_number(now))
        try:
            lines = self._validate(request)
            self._check_stock(lines)
            outcome.advance(OrderState.STOCK_CHECKED)
            delivery = request.get("delivery")
            if delivery and delivery.get("date"):
                self.capacity.check(delivery["date"])
            outcome.advance(OrderState.DELIVERY_CHECKED)
        except AppError as err:
            outcome.advance(OrderState.REJECTED, err.message)
            raise

        amount = _amount(request["amount"])
        try:
            outcome.payment = self._charge(outcome.order_number, amount, request, now)
        except PaymentError as err:
            outcome.advance(OrderState.FAILED, err.message)
            raise
        outcome.advance(OrderState.CHARGED)

        try:
            self._record(outcome, amount, request, now)
        except Exception:  # payment captured; the webhook rebuilds the sale record by payment id
            logger.exception("order %s: recording sale %s failed", outcome.order_number, outcome.payment.id)
            outcome.recorded = False
        else:
            outcome.advance(OrderState.RECORDED)

        outcome.shortfalls = self._deplete(outcome, lines)
        outcome.advance(OrderState.STOCK_DEPLETED)
        return outcome

    def _validate(self, request: dict) -> dict:
        if not request.get("sourceId") or _amount(request.get("amount")) is None:
            raise ValidationError("Missing sourceId or amount")
        if to_cents(_amount(request["amount"])) < 1:
            raise ValidationError("amount must be at least 0.01")
        delivery = request.get("delivery")
        if delivery is not None and not isinstance(delivery, dict):
            raise ValidationError("delivery must be an object")
        customer = request.get("customer")
        if customer is not None and not isinstance(customer, dict):
            raise ValidationError("customer must be an object")
        return stock_lines(request.get("items"))

    def _check_stock(self, lines: dict) -> None:
        short = []
        for pid, (label, tons) in lines.items():
            available = self.ledger.available(pid)
            if available < tons:
                short.append({"product": label, "productId": pid,
                              "available": round_tons(available), "requested": tons})
        if short:
            raise InsufficientInventory(short)

    def _charge(self, number: str, amount: Decimal, request: dict, now: datetime) -> Payment:
        customer = request.get("customer") or {}
        return self.payments.create_payment(
            source_id=request["sourceId"],
            amount_cents=to_cents(amount),
            idempotency_key=f"{number}-{int(now.timestamp() * 1000)}",
            note=f"YTP Yard Sale | {customer.get('name') or 'Walk-in'} | "
                 f"{request.get('salesperson') or 'Unknown'}",
            reference_id=number,
            buyer_email=customer.get("email") or None,
        )

    def _record(self, outcome: OrderOutcome, amount: Decimal, request: dict, now: datetime) -> None:
        payment, stamp = outcome.payment, now.strftime("%Y-%m-%dT%H:%M:%SZ")
        customer = request.get("customer") or {}
        delivery = request.get("delivery")
        self.store.upsert_sale(payment.id, {
            "paymentId": payment.id,
            "orderNumber": outcome.order_number,
            "orderType": request.get("orderType") or "yard_sale",
            "customer": {
                "name": customer.get("name") or "Walk-in",
                "email": customer.get("email") or None,
                "phone": customer.get("phone") or None,
            },
            "items": [{
                "product": item.get("material") or item.get("product") or "Unknown",
                "productId": item.get("productId") or None,
                "quantity": item.get("quantity") or 0,
                "tons": item.get("tons") or 0,
                "total": item.get("total") or 0,
            } for item in (request.get("items") or [])],
            "totals": {"subtotal": reverse_subtotal(amount).quantize(CENT, ROUND_HALF_UP), "total": amount},
            "delivery": {"scheduledDate": delivery["date"], "status": "pending"}
                        if delivery and delivery.get("date") else None,
            "payment": {
                "method": "card",
                "status": "completed" if payment.completed else "pending",
                "providerPaymentId": payment.id,
                "receiptUrl": payment.receipt_url,
                "completedAt": stamp if payment.completed else None,
            },
            "salesperson": request.get("salesperson") or "Unknown",
            "status": "paid",
            "updatedAt": stamp,
        }, defaults={"createdAt": stamp, "source": "yardtrackpro"})
        if self.bus is not None:
            self.bus.publish("yardtrack.orders", "OrderPaid", {
                "orderNumber": outcome.order_number, "paymentId": payment.id, "total": amount,
            })

    def _deplete(self, outcome: OrderOutcome, lines: dict) -> list[dict]:
        shortfalls = []
        for pid, (_, tons) in lines.items():
            try:
                change = self.ledger.decrease_for_sale(outcome.payment.id, pid, tons)
            except InsufficientStock as err:
                shortfall = {"productId": pid, "requested": tons,
                             "available": err.available, "error": "Insufficient inventory"}
            except Exception:  # the charge stands; inventory is fixed by hand
                logger.exception("order %s: depleting %s failed", outcome.order_number, pid)
                shortfall = {"productId": pid, "requested": tons, "error": "Depletion failed"}
            else:
                if change is not None and self.bus is not None:
                    self.bus.publish("yardtrack.inventory", "InventoryDepleted", {
                        "productId": pid, "tons": tons, "newStock": change.new_stock,
                        "saleId": outcome.payment.id,
                    })
                continue
            logger.warning("order %s oversold %s: %s", outcome.order_number, pid, shortfall)
            shortfalls.append(shortfall)
            if self.bus is not None:
                self.bus.publish("yardtrack.orders", "DepletionShortfall", {
                    "orderNumber": outcome.order_number, "paymentId": outcome.payment.id, **shortfall,
                })
        return shortfalls
