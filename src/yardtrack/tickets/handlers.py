# src/yardtrack/tickets/handlers.py
from functools import lru_cache
from yardtrack.common.config import get_settings
from yardtrack.common.http import endpoint, parse_json, raw_body, respond
from yardtrack.tickets.extractor import TicketExtractor, make_client
from yardtrack.tickets.matcher import MaterialMatcher, load_aliases


@lru_cache(maxsize=1)
def extractor() -> TicketExtractor:
    settings = get_settings()
    matcher = MaterialMatcher(load_aliases(settings.product_aliases_path),
                              settings.match_review_threshold)
    client = make_client(settings.anthropic_api_key, settings.http_timeout)
    return TicketExtractor(client, settings.anthropic_model, matcher)


@endpoint
def extract_ticket(event, context):
    body = parse_json(raw_body(event))
    ticket = extractor().extract(body.get("image"))
    return respond(200, {"success": True, "data": ticket})
