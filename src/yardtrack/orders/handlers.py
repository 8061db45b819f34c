# src/yardtrack/orders/handlers.py
from functools import lru_cache
from yardtrack.common.config import get_settings
from yardtrack.common.events import EventPublisher
from yardtrack.common.http import endpoint, parse_json, raw_body, respond
from yardtrack.common.store import DynamoStore
from yardtrack.delivery.capacity import DeliveryCapacityChecker
from yardtrack.inventory.ledger import StockLedger
from yardtrack.orders.processor import OrderProcessor
from yardtrack.payments.square import SquarePayments


@lru_cache(maxsize=1)
def processor() -> OrderProcessor:
    settings = get_settings()
    store = DynamoStore(settings)
    payments = SquarePayments(
        access_token=settings.square_access_token,
        location_id=settings.square_location_id,
        base_url=settings.square_base_url,
        version=settings.square_version,
        timeout=settings.http_timeout,
    )
    return OrderProcessor(
        store=store,
        ledger=StockLedger(store),
        capacity=DeliveryCapacityChecker(store, settings.truck_slots_per_day),
        payments=payments,
        bus=EventPublisher(settings.event_bus_name),
    )


@endpoint
def create_order(event, context):
    body = parse_json(raw_body(event))
    outcome = processor().submit(body)
    return respond(200, outcome.to_body())
