# src/yardtrack/common/events.py
import logging
from botocore.exceptions import BotoCoreError, ClientError
from yardtrack.common import clients
from yardtrack.common.http import dumps

logger = logging.getLogger(__name__)


class EventPublisher:
    """Puts domain events on the configured EventBridge bus; no bus, no events."""

    def __init__(self, bus_name: str, client=None):
        self.bus_name = bus_name
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = clients.events()
        return self._client

    def publish(self, source: str, detail_type: str, detail: dict) -> None:
        if not self.bus_name:
            return
        # best-effort: the state change being announced has already happened
        try:
            resp = self.client.put_events(Entries=[{
                "Source": source,
                "DetailType": detail_type,
                "EventBusName": self.bus_name,
                "Detail": dumps(detail),
            }])
        except (BotoCoreError, ClientError):
            logger.exception("event %s not published", detail_type)
            return
        if resp.get("FailedEntryCount"):
            logger.warning("event %s not delivered: %s", detail_type, resp.get("Entries"))
