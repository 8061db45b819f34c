# src/yardtrack/common/errors.py
from decimal import Decimal, ROUND_HALF_UP


def round_tons(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


class AppError(Exception):
    """Business failure rendered as a structured response by the handler layer."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_body(self) -> dict:
        return {"error": self.message}


class ValidationError(AppError):
    status_code = 400
    error = "Invalid request"


class InsufficientStock(AppError):
    """A single ledger decrease asked for more than the product holds."""

    status_code = 400
    error = "Insufficient inventory"

    def __init__(self, product_id: str, available: Decimal, requested: Decimal):
        self.product_id = product_id
        self.available = Decimal(available)
        self.requested = Decimal(requested)
        super().__init__(
            f"Only {round_tons(self.available)} tons of {product_id} available. "
            f"Cannot sell {self.requested} tons."
        )

    def to_body(self) -> dict:
        return {
            "success": False,
            "error": self.error,
            "available": round_tons(self.available),
            "requested": self.requested,
            "message": self.message,
        }


class InsufficientInventory(AppError):
    """An order was rejected because one or more line items exceed stock."""

    status_code = 400
    error = "Insufficient inventory"

    def __init__(self, items: list[dict]):
        self.items = items
        super().__init__("; ".join(
            f"{i['product']}: only {i['available']} tons available, need {i['requested']}"
            for i in items
        ))

    def to_body(self) -> dict:
        return {"success": False, "error": self.error, "items": self.items, "message": self.message}


class NoDeliveryCapacity(AppError):
    status_code = 400
    error = "No trucks available"

    def __init__(self, date: str):
        self.date = date
        super().__init__(f"No delivery trucks available on {date}. Please select a different date.")

    def to_body(self) -> dict:
        return {"success": False, "error": self.error, "date": self.date, "message": self.message}


class PaymentError(AppError):
    status_code = 400
    error = "Payment failed"

    def __init__(self, message: str | None = None, code: str | None = None):
        super().__init__(message)
        self.code = code

    def to_body(self) -> dict:
        return {"error": self.message, "code": self.code}


class PaymentDeclined(PaymentError):
    error = "Payment declined"


class PaymentProviderError(PaymentError):
    pass


class ExtractionServiceError(AppError):
    error = "Failed to analyze image"

    def __init__(self, details: str):
        super().__init__()
        self.details = details

    def to_body(self) -> dict:
        return {"error": self.error, "details": self.details}


class ExtractionParseError(AppError):
    error = "Failed to parse extracted data"

    def __init__(self, raw: str):
        super().__init__()
        self.raw = raw

    def to_body(self) -> dict:
        return {"error": self.error, "raw": self.raw}


class InvalidSignature(AppError):
    status_code = 401
    error = "Invalid signature"
