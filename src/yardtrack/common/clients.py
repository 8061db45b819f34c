# src/yardtrack/common/clients.py
import threading
import boto3


class ClientCache:
    """Process-wide AWS clients.

    Each client is created on first use and reused for the lifetime of the
    process (a warm Lambda container serves many requests). Nothing is ever
    closed; the runtime recycles the process instead.
    """

    def __init__(self, factory=boto3.client):
        self._factory = factory
        self._clients = {}
        self._lock = threading.Lock()

    def get(self, service: str, **kwargs):
        client = self._clients.get(service)
        if client is not None:
            return client
        with self._lock:
            if service not in self._clients:
                self._clients[service] = self._factory(service, **kwargs)
            return self._clients[service]


clients = ClientCache()


def dynamodb():
    return clients.get("dynamodb")


def events():
    return clients.get("events")
