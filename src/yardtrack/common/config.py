# src/yardtrack/common/config.py
import os, logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    inventory_table: str = ""
    inbound_tickets_table: str = ""
    sales_table: str = ""
    commissions_table: str = ""
    trucks_table: str = ""
    delivery_schedule_table: str = ""
    delivery_date_index: str = "date-index"
    event_bus_name: str = ""

    square_access_token: str = ""
    square_environment: str = "sandbox"
    square_location_id: str = ""
    square_version: str = "2024-07-17"
    square_webhook_signature_key: str = ""
    square_webhook_url: str = ""

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    http_timeout: float = 60.0
    truck_slots_per_day: int = 8
    match_review_threshold: Decimal = Decimal("0.6")
    product_aliases_path: str = ""
    log_level: str = "INFO"

    @property
    def square_base_url(self) -> str:
        if self.square_environment == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.getenv
        return cls(
            inventory_table=env("INVENTORY_TABLE", ""),
            inbound_tickets_table=env("INBOUND_TICKETS_TABLE", ""),
            sales_table=env("SALES_TABLE", ""),
            commissions_table=env("COMMISSIONS_TABLE", ""),
            trucks_table=env("TRUCKS_TABLE", ""),
            delivery_schedule_table=env("DELIVERY_SCHEDULE_TABLE", ""),
            delivery_date_index=env("DELIVERY_DATE_INDEX", "date-index"),
            event_bus_name=env("EVENT_BUS_NAME", ""),
            square_access_token=env("SQUARE_ACCESS_TOKEN", ""),
            square_environment=env("SQUARE_ENVIRONMENT", "sandbox"),
            square_location_id=env("SQUARE_LOCATION_ID", ""),
            square_version=env("SQUARE_VERSION", "2024-07-17"),
            square_webhook_signature_key=env("SQUARE_WEBHOOK_SIGNATURE_KEY", ""),
            square_webhook_url=env("SQUARE_WEBHOOK_URL", ""),
            anthropic_api_key=env("ANTHROPIC_API_KEY", ""),
            anthropic_model=env("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            http_timeout=float(env("HTTP_TIMEOUT", "60")),
            truck_slots_per_day=int(env("TRUCK_SLOTS_PER_DAY", "8")),
            match_review_threshold=Decimal(env("MATCH_REVIEW_THRESHOLD", "0.6")),
            product_aliases_path=env("PRODUCT_ALIASES_PATH", ""),
            log_level=env("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings


def configure_logging(level: str = "INFO") -> None:
    # Lambda pre-installs a handler on the root logger; only add one when running elsewhere
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    root.setLevel(level)
