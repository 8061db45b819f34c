import json, threading
from decimal import Decimal
from types import SimpleNamespace
import pytest
from yardtrack.common.errors import InsufficientStock
from yardtrack.payments.square import Payment


class MemoryStore:
    """In-memory stand-in for DynamoStore with the same atomicity guarantees."""

    def __init__(self, stock=None, trucks=None, bookings=None):
        self.stock = {k: Decimal(str(v)) for k, v in (stock or {}).items()}
        self.trucks = list(trucks or [])
        self.bookings = list(bookings or [])
        self.tickets, self.sales, self.commissions = [], {}, {}
        self.depleted = set()
        self.broken = set()
        self._lock = threading.Lock()

    def _check(self, op):
        if op in self.broken:
            raise RuntimeError(f"{op} unavailable")

    def get_stock(self, product_id):
        self._check("get_stock")
        return self.stock.get(product_id, Decimal("0"))

    def increment_stock(self, product_id, tons, at):
        self._check("increment_stock")
        with self._lock:
            self.stock[product_id] = self.stock.get(product_id, Decimal("0")) + tons
            return self.stock[product_id]

    def decrement_stock(self, product_id, tons, at):
        self._check("decrement_stock")
        with self._lock:
            current = self.stock.get(product_id, Decimal("0"))
            if current < tons:
                raise InsufficientStock(product_id, current, tons)
            self.stock[product_id] = current - tons
            return self.stock[product_id]

    def claim_depletion(self, sale_id, product_id):
        self._check("claim_depletion")
        with self._lock:
            if (sale_id, product_id) in self.depleted:
                return False
            self.depleted.add((sale_id, product_id))
            return True

    def release_depletion(self, sale_id, product_id):
        with self._lock:
            self.depleted.discard((sale_id, product_id))

    def put_inbound_ticket(self, record):
        self._check("put_inbound_ticket")
        ticket_id = f"t-{len(self.tickets) + 1}"
        self.tickets.append({**record, "ticketId": ticket_id})
        return ticket_id

    def upsert_sale(self, sale_id, fields, defaults=None):
        self._check("upsert_sale")
        with self._lock:
            item = self.sales.setdefault(sale_id, {"saleId": sale_id})
            item.update(fields)
            for key, value in (defaults or {}).items():
                item.setdefault(key, value)

    def put_commission(self, record):
        self._check("put_commission")
        with self._lock:
            if record["saleId"] in self.commissions:
                return False
            self.commissions[record["saleId"]] = dict(record)
            return True

    def active_trucks(self):
        return [t["truckId"] for t in self.trucks if t.get("active") is not False]

    def bookings_on(self, date):
        return [b for b in self.bookings if b["date"] == date and b.get("status") != "cancelled"]


class FakePayments:
    def __init__(self, status="COMPLETED", error=None):
        self.status = status
        self.error = error
        self.calls = []

    def create_payment(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return Payment(
            id=f"sq-pay-{len(self.calls)}",
            status=self.status,
            receipt_url="https://squareup.com/receipt/preview/abc",
            created_at="2026-10-19T15:00:00Z",
            amount_cents=kwargs["amount_cents"],
        )


class RecordingBus:
    def __init__(self):
        self.events = []

    def publish(self, source, detail_type, detail):
        self.events.append((source, detail_type, detail))

    def types(self):
        return [e[1] for e in self.events]


class FakeAnthropic:
    """Mimics `client.messages.create` of the anthropic SDK."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.requests = []
        self.messages = self

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.reply)])


@pytest.fixture
def store():
    return MemoryStore(stock={"limestone-3/4": "20", "masonry-sand": "5.5"})


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def payments():
    return FakePayments()


def api_event(body=None, method="POST", headers=None):
    return {
        "httpMethod": method,
        "headers": headers or {"Content-Type": "application/json"},
        "body": body if isinstance(body, str) or body is None else json.dumps(body),
        "isBase64Encoded": False,
    }


def response_json(resp):
    return json.loads(resp["body"]) if resp["body"] else None
