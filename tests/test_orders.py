from datetime import datetime, timezone
from decimal import Decimal
import pytest
from yardtrack.common.errors import (
    InsufficientInventory, NoDeliveryCapacity, PaymentDeclined, ValidationError,
)
from yardtrack.delivery.capacity import DeliveryCapacityChecker
from yardtrack.inventory.ledger import StockLedger
from yardtrack.orders.processor import OrderProcessor, OrderState, stock_lines, to_cents
from yardtrack.payments.webhook import WebhookReconciler
from conftest import FakePayments, MemoryStore

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def make_processor(store, payments, bus=None):
    return OrderProcessor(
        store=store,
        ledger=StockLedger(store),
        capacity=DeliveryCapacityChecker(store),
        payments=payments,
        bus=bus,
        clock=lambda: NOW,
    )


def order(**overrides):
    req = {
        "sourceId": "cnon:card-nonce-ok",
        "amount": Decimal("115.00"),
        "customer": {"name": "Ana Ruiz", "email": "ana@example.com", "phone": "555-0100"},
        "salesperson": "Rosa",
        "items": [
            {"productId": "limestone-3/4", "material": "3/4 Limestone", "tons": Decimal("4"), "quantity": 1,
             "total": Decimal("100")},
        ],
    }
    req.update(overrides)
    return req


def test_successful_order_charges_records_and_depletes(store, payments, bus):
    outcome = make_processor(store, payments, bus).submit(order())

    assert outcome.state is OrderState.STOCK_DEPLETED
    assert outcome.history == [
        OrderState.RECEIVED, OrderState.STOCK_CHECKED, OrderState.DELIVERY_CHECKED,
        OrderState.CHARGED, OrderState.RECORDED, OrderState.STOCK_DEPLETED,
    ]
    assert outcome.order_number.startswith("YTP-20261019-")

    call = payments.calls[0]
    assert call["amount_cents"] == 11500
    assert call["reference_id"] == outcome.order_number
    assert call["idempotency_key"] == f"{outcome.order_number}-{int(NOW.timestamp() * 1000)}"
    assert call["note"] == "YTP Yard Sale | Ana Ruiz | Rosa"
    assert call["buyer_email"] == "ana@example.com"

    sale = store.sales["sq-pay-1"]
    assert sale["orderNumber"] == outcome.order_number
    assert sale["payment"]["status"] == "completed"
    assert sale["payment"]["providerPaymentId"] == "sq-pay-1"
    assert sale["totals"] == {"subtotal": Decimal("102.64"), "total": Decimal("115.00")}
    assert sale["status"] == "paid"
    assert sale["delivery"] is None

    assert store.stock["limestone-3/4"] == Decimal("16")
    assert bus.types() == ["OrderPaid", "InventoryDepleted"]

    body = outcome.to_body()
    assert body["success"] is True and body["paymentId"] == "sq-pay-1"
    assert "shortfalls" not in body


def test_any_short_item_rejects_before_charging(store, payments):
    items = [
        {"productId": "limestone-3/4", "tons": 4},
        {"productId": "masonry-sand", "material": "Masonry Sand", "tons": 6},
        {"productId": "topsoil", "tons": 1},
    ]
    with pytest.raises(InsufficientInventory) as exc:
        make_processor(store, payments).submit(order(items=items))

    assert payments.calls == []
    assert store.sales == {}
    assert store.stock["limestone-3/4"] == Decimal("20")
    assert exc.value.items == [
        {"product": "Masonry Sand", "productId": "masonry-sand", "available": Decimal("5.5"), "requested": Decimal("6")},
        {"product": "topsoil", "productId": "topsoil", "available": Decimal("0.0"), "requested": Decimal("1")},
    ]
    assert exc.value.message == "Masonry Sand: only 5.5 tons available, need 6; topsoil: only 0.0 tons available, need 1"


def test_items_for_the_same_product_are_summed(store, payments):
    items = [{"productId": "masonry-sand", "tons": 3}, {"productId": "masonry-sand", "tons": 3}]
    with pytest.raises(InsufficientInventory) as exc:
        make_processor(store, payments).submit(order(items=items))
    assert exc.value.items[0]["requested"] == Decimal("6")
    assert payments.calls == []


def test_missing_fields(store, payments):
    for req in (order(sourceId=""), order(amount=None), order(amount="abc"), order(amount=-5)):
        with pytest.raises(ValidationError):
            make_processor(store, payments).submit(req)
    assert payments.calls == []


def test_no_truck_rejects_before_charging(payments):
    store = MemoryStore(
        stock={"limestone-3/4": 20},
        trucks=[{"truckId": "T1"}],
        bookings=[{"truckId": "T1", "date": "2026-10-21", "status": "scheduled"}] * 8,
    )
    with pytest.raises(NoDeliveryCapacity):
        make_processor(store, payments).submit(order(delivery={"date": "2026-10-21"}))
    assert payments.calls == []


def test_delivery_is_recorded_as_pending(payments):
    store = MemoryStore(stock={"limestone-3/4": 20}, trucks=[{"truckId": "T1"}])
    make_processor(store, payments).submit(order(delivery={"date": "2026-10-21"}))
    assert store.sales["sq-pay-1"]["delivery"] == {"scheduledDate": "2026-10-21", "status": "pending"}


def test_declined_card_persists_nothing(store):
    payments = FakePayments(error=PaymentDeclined("Card declined.", "CARD_DECLINED"))
    with pytest.raises(PaymentDeclined):
        make_processor(store, payments).submit(order())
    assert store.sales == {}
    assert store.stock["limestone-3/4"] == Decimal("20")


def test_pending_provider_status(store):
    make_processor(store, FakePayments(status="PENDING")).submit(order())
    payment = store.sales["sq-pay-1"]["payment"]
    assert payment["status"] == "pending"
    assert payment["completedAt"] is None


def test_lost_depletion_race_still_succeeds(store, payments, bus):
    class RacingLedger(StockLedger):
        def decrease(self, product_id, tons):
            # another order drains the product between the check and the depletion
            self.store.stock[product_id] = Decimal("1")
            return super().decrease(product_id, tons)

    processor = make_processor(store, payments, bus)
    processor.ledger = RacingLedger(store)
    outcome = processor.submit(order())

    assert outcome.state is OrderState.STOCK_DEPLETED
    assert outcome.shortfalls == [{"productId": "limestone-3/4", "requested": Decimal("4"),
                                   "available": Decimal("1"), "error": "Insufficient inventory"}]
    assert store.stock["limestone-3/4"] == Decimal("1")
    assert "DepletionShortfall" in bus.types()
    assert outcome.to_body()["shortfalls"][0]["productId"] == "limestone-3/4"


def test_store_outage_after_charge_is_reported_not_raised(store, payments, bus):
    store.broken.add("decrement_stock")
    outcome = make_processor(store, payments, bus).submit(order())
    assert outcome.shortfalls[0]["error"] == "Depletion failed"
    assert store.sales["sq-pay-1"]["status"] == "paid"


def test_record_failure_after_charge_still_returns_payment(store, payments):
    store.broken.add("upsert_sale")
    outcome = make_processor(store, payments).submit(order())
    assert OrderState.RECORDED not in outcome.history
    assert outcome.to_body()["recorded"] is False
    assert store.stock["limestone-3/4"] == Decimal("16")


def test_order_and_webhook_converge_on_one_sale(store, payments):
    outcome = make_processor(store, payments).submit(order())
    WebhookReconciler(store).reconcile({"type": "payment.completed", "data": {"object": {"payment": {
        "id": "sq-pay-1", "status": "COMPLETED", "note": "YTP Yard Sale | Ana Ruiz | Rosa",
        "reference_id": outcome.order_number, "amount_money": {"amount": 11500, "currency": "USD"},
    }}}})
    assert list(store.sales) == ["sq-pay-1"]
    assert store.sales["sq-pay-1"]["orderNumber"] == outcome.order_number
    assert store.sales["sq-pay-1"]["commission"] == Decimal("3.08")
    assert len(store.commissions) == 1


def test_to_cents_rounds_half_up():
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents(Decimal("115")) == 11500


def test_stock_lines_skip_items_without_product_or_tons():
    lines = stock_lines([{"material": "Delivery fee", "total": 50}, {"productId": "topsoil", "tons": 0}])
    assert lines == {}


def test_depletion_is_claimed_under_the_payment(store, payments):
    make_processor(store, payments).submit(order())
    assert store.depleted == {("sq-pay-1", "limestone-3/4")}
    assert StockLedger(store).decrease_for_sale("sq-pay-1", "limestone-3/4", 4) is None
    assert store.stock["limestone-3/4"] == Decimal("16")


def test_failed_depletion_leaves_the_payment_unclaimed(store, payments):
    store.broken.add("decrement_stock")
    make_processor(store, payments).submit(order())
    assert store.depleted == set()
