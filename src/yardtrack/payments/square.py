# src/yardtrack/payments/square.py
import logging
from dataclasses import dataclass
import certifi
import httpx
from yardtrack.common.errors import PaymentDeclined, PaymentProviderError

logger = logging.getLogger(__name__)

# statuses Square reports for a captured or capturable card payment
COMPLETED_STATUSES = {"COMPLETED", "APPROVED"}


def field(obj: dict, snake: str, camel: str, default=None):
    """Square's wire format is snake_case; its SDKs re-case to camelCase."""
    if not obj:
        return default
    value = obj.get(snake)
    if value is None:
        value = obj.get(camel)
    return default if value is None else value


@dataclass(frozen=True)
class Payment:
    id: str
    status: str
    receipt_url: str | None
    created_at: str | None
    amount_cents: int

    @property
    def completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @classmethod
    def from_api(cls, data: dict) -> "Payment":
        money = field(data, "amount_money", "amountMoney", {})
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            receipt_url=field(data, "receipt_url", "receiptUrl"),
            created_at=field(data, "created_at", "createdAt"),
            amount_cents=int(money.get("amount") or 0),
        )


class SquarePayments:
    """Minimal client for Square's `CreatePayment` endpoint."""

    def __init__(self, access_token: str, location_id: str, base_url: str,
                 version: str, timeout: float = 30.0, http: httpx.Client | None = None):
        self.location_id = location_id
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout, verify=certifi.where())
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": version,
            "Content-Type": "application/json",
        }

    def create_payment(self, *, source_id: str, amount_cents: int, idempotency_key: str,
                       note: str = "", reference_id: str = "",
                       buyer_email: str | None = None, currency: str = "USD") -> Payment:
        payload = {
            "source_id": source_id,
            "idempotency_key": idempotency_key,
            "amount_money": {"amount": amount_cents, "currency": currency},
            "location_id": self.location_id,
            "note": note,
            "reference_id": reference_id,
        }
        if buyer_email:
            payload["buyer_email_address"] = buyer_email
        try:
            resp = self.http.post("/v2/payments", json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            logger.error("square unreachable: %s", e)
            raise PaymentProviderError("Payment provider unavailable", "PROVIDER_UNAVAILABLE")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.is_error or data.get("errors"):
            raise _payment_error(resp.status_code, data.get("errors") or [])
        if "payment" not in data:
            raise PaymentProviderError("Payment provider returned no payment", "MALFORMED_RESPONSE")
        return Payment.from_api(data["payment"])


def _payment_error(status: int, errors: list[dict]):
    first = errors[0] if errors else {}
    detail = first.get("detail") or "Payment failed"
    code = first.get("code") or f"HTTP_{status}"
    logger.warning("square payment rejected (%s): %s %s", status, code, detail)
    if first.get("category") == "PAYMENT_METHOD_ERROR":
        return PaymentDeclined(detail, code)
    return PaymentProviderError(detail, code)
