# src/yardtrack/common/http.py
import base64, binascii, functools, json, logging
from decimal import Decimal
from yardtrack.common.errors import AppError, ValidationError

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Content-Type": "application/json",
}


class DecimalEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Decimal):
            return int(obj) if obj == obj.to_integral_value() else float(obj)
        return super().default(obj)


def dumps(payload) -> str:
    return json.dumps(payload, cls=DecimalEncoder)


def respond(status: int, payload=None) -> dict:
    body = "" if payload is None else dumps(payload)
    return {"statusCode": status, "headers": dict(CORS_HEADERS), "body": body}


def raw_body(event: dict) -> str:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            body = base64.b64decode(body, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise ValidationError("Request body is not valid base64 UTF-8")
    return body


def parse_json(body: str) -> dict:
    try:
        data = json.loads(body or "{}", parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON body: {e.msg}")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def header(event: dict, name: str) -> str | None:
    # API Gateway preserves the client's casing
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == name.lower():
            return value
    return None


def endpoint(fn):
    """Lambda proxy wrapper: CORS pre-flight, POST only, AppError rendering."""

    @functools.wraps(fn)
    def handler(event, context):
        method = (event.get("httpMethod") or "").upper()
        if method == "OPTIONS":
            return respond(200)
        if method != "POST":
            return respond(405, {"error": "Method not allowed"})
        try:
            return fn(event, context)
        except AppError as err:
            logger.warning("%s rejected: %s", fn.__name__, err.message)
            return respond(err.status_code, err.to_body())
        except Exception:
            logger.exception("%s failed", fn.__name__)
            return respond(500, {"error": "Internal server error"})

    return handler
