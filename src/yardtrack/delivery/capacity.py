# src/yardtrack/delivery/capacity.py
import logging
from collections import Counter
from datetime import datetime
from typing import Iterable
from yardtrack.common.errors import NoDeliveryCapacity, ValidationError

logger = logging.getLogger(__name__)

# 8am-4pm in one-hour blocks
DEFAULT_SLOTS_PER_TRUCK = 8


def available_trucks(truck_ids: Iterable[str], bookings: Iterable[dict],
                     capacity: int = DEFAULT_SLOTS_PER_TRUCK) -> list[str]:
    """Trucks whose non-cancelled bookings are below `capacity`."""
    load = Counter(b.get("truckId") for b in bookings if b.get("status") != "cancelled")
    return [t for t in truck_ids if load[t] < capacity]


def parse_delivery_date(value) -> str:
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").strftime("%Y-%m-%d")
    except ValueError:
        raise ValidationError("delivery.date must be YYYY-MM-DD")


class DeliveryCapacityChecker:
    """Admission check only: a passing check does not hold a slot."""

    def __init__(self, store, capacity: int = DEFAULT_SLOTS_PER_TRUCK):
        self.store = store
        self.capacity = capacity

    def check(self, date) -> list[str]:
        date = parse_delivery_date(date)
        trucks = self.store.active_trucks()
        bookings = self.store.bookings_on(date)
        free = available_trucks(trucks, bookings, self.capacity)
        logger.info("delivery %s: %d/%d trucks free (%d bookings)",
                    date, len(free), len(trucks), len(bookings))
        if not free:
            raise NoDeliveryCapacity(date)
        return free
