# src/yardtrack/tickets/extractor.py
import json, logging, re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import anthropic
import certifi
import httpx
from yardtrack.common.errors import ExtractionParseError, ExtractionServiceError, ValidationError
from yardtrack.tickets.matcher import MaterialMatcher

logger = logging.getLogger(__name__)

MAX_TOKENS = 1024
DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,", re.I)

PROMPT = """You are analyzing a material delivery ticket/scale ticket image. Extract the following information and return ONLY a valid JSON object with these exact fields:

{
  "vendor": "Company name from the ticket header (e.g., Liberty Materials Inc., Collier Materials, etc.)",
  "material": "Product/material type (e.g., Masonry Sand #2, QM-1/4 Minus, Limestone, etc.)",
  "ticketNumber": "The ticket number/ID",
  "weight": "NET weight in tons as a number (not gross, not tare - the NET weight)",
  "truck": "Truck ID or number",
  "date": "Date in YYYY-MM-DD format"
}

Important notes:
- For weight, always use the NET weight (Gross minus Tare)
- If the ticket shows both short tons and metric tonnes, use the short tons column
- If the weight is given in pounds, convert to tons by dividing by 2000
- If the weight is already in tons, use that number directly
- Look for fields labeled "Net", "Net Weight", "Net Tons", etc.
- Return ONLY the JSON object, no other text or explanation
- If a field cannot be determined, use an empty string \"\""""


def make_client(api_key: str, timeout: float = 60.0) -> anthropic.Anthropic:
    # our own httpx client so the SDK does not pick up proxy settings
    return anthropic.Anthropic(
        api_key=api_key,
        http_client=httpx.Client(timeout=timeout, verify=certifi.where()),
    )


def split_image(image: str) -> tuple[str, str]:
    """(media_type, base64 data) from a data URL or bare base64 string."""
    if not isinstance(image, str) or not image.strip():
        raise ValidationError("No image provided")
    image = image.strip()
    m = DATA_URL.match(image)
    if m:
        return m.group(1).lower(), image[m.end():]
    return "image/jpeg", image


def reply_text(message) -> str:
    parts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", "") == "text":
            parts.append(block.text)
    return "".join(parts).strip()


def first_json_object(text: str) -> str | None:
    """First balanced {...} span; braces inside JSON strings do not count."""
    start = text.find("{")
    while start != -1:
        depth, in_string, escaped = 0, False, False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def parse_reply(text: str) -> dict:
    span = first_json_object(text)
    if span is None:
        raise ExtractionParseError(text)
    try:
        data = json.loads(span)
    except json.JSONDecodeError:
        raise ExtractionParseError(text)
    if not isinstance(data, dict):
        raise ExtractionParseError(text)
    return data


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _weight(value) -> Decimal:
    # "12.5 tons" and "12.5" both read as 12.5; anything unreadable is 0
    m = re.search(r"-?\d+(?:\.\d+)?", str(value or "").replace(",", ""))
    if not m:
        return Decimal("0")
    try:
        return Decimal(m.group(0))
    except InvalidOperation:
        return Decimal("0")


def normalize_ticket(data: dict) -> dict:
    return {
        "vendor": _text(data.get("vendor")),
        "material": _text(data.get("material")),
        "ticketNumber": _text(data.get("ticketNumber")),
        "weight": _weight(data.get("weight")),
        "truck": _text(data.get("truck")),
        "date": _text(data.get("date")) or datetime.now(timezone.utc).strftime("%Y-%m-%d"),
    }


class TicketExtractor:
    def __init__(self, client, model: str, matcher: MaterialMatcher | None = None):
        self.client = client
        self.model = model
        self.matcher = matcher

    def extract(self, image: str) -> dict:
        media_type, data = split_image(image)
        try:
            msg = self.client.messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}},
                        {"type": "text", "text": PROMPT},
                    ],
                }],
            )
        except anthropic.APIError as e:
            logger.error("vision service error: %s", e)
            raise ExtractionServiceError(str(e))

        raw = reply_text(msg)
        try:
            ticket = normalize_ticket(parse_reply(raw))
        except ExtractionParseError:
            logger.error("unparseable ticket reply: %r", raw[:500])
            raise

        if self.matcher is not None and ticket["material"]:
            match = self.matcher.match(ticket["material"])
            ticket["productId"] = match.product_id
            ticket["matchConfidence"] = match.confidence
            ticket["needsReview"] = match.needs_review
        logger.info("ticket %s: %s %s tons -> %s", ticket["ticketNumber"] or "?",
                    ticket["material"], ticket["weight"], ticket.get("productId"))
        return ticket
