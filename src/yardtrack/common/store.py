# src/yardtrack/common/store.py
import uuid
from decimal import Decimal
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError
from yardtrack.common import clients
from yardtrack.common.config import Settings
from yardtrack.common.errors import InsufficientStock

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_item(doc: dict) -> dict:
    return {k: _serializer.serialize(_plain(v)) for k, v in doc.items()}


def from_item(item: dict) -> dict:
    return {k: _deserializer.deserialize(v) for k, v in item.items()}


def _plain(value):
    # DynamoDB numbers must be Decimal; floats are rejected by the serializer
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _conditional_failed(err: ClientError) -> bool:
    return err.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _depletion_key(sale_id: str, product_id: str) -> str:
    return f"idem#{sale_id}#{product_id}"


class DynamoStore:
    """Every write that must stay consistent across concurrent requests is a
    single conditional or atomic DynamoDB update."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = clients.dynamodb()
        return self._client

    # ---------- stock ----------
    def get_stock(self, product_id: str) -> Decimal:
        resp = self.client.get_item(
            TableName=self.settings.inventory_table,
            Key={"productId": {"S": product_id}},
            ConsistentRead=True,
        )
        item = resp.get("Item") or {}
        return Decimal(item.get("currentStock", {}).get("N", "0"))

    def increment_stock(self, product_id: str, tons: Decimal, at: str) -> Decimal:
        resp = self.client.update_item(
            TableName=self.settings.inventory_table,
            Key={"productId": {"S": product_id}},
            UpdateExpression="ADD currentStock :t SET updatedAt = :now",
            ExpressionAttributeValues={":t": {"N": str(tons)}, ":now": {"S": at}},
            ReturnValues="UPDATED_NEW",
        )
        return Decimal(resp["Attributes"]["currentStock"]["N"])

    def decrement_stock(self, product_id: str, tons: Decimal, at: str) -> Decimal:
        try:
            resp = self.client.update_item(
                TableName=self.settings.inventory_table,
                Key={"productId": {"S": product_id}},
                UpdateExpression="SET currentStock = currentStock - :t, updatedAt = :now",
                ConditionExpression="currentStock >= :t",
                ExpressionAttributeValues={":t": {"N": str(tons)}, ":now": {"S": at}},
                ReturnValues="UPDATED_NEW",
                ReturnValuesOnConditionCheckFailure="ALL_OLD",
            )
        except ClientError as err:
            if not _conditional_failed(err):
                raise
            old = err.response.get("Item")
            if old is None:
                available = self.get_stock(product_id)
            else:
                available = Decimal(old.get("currentStock", {}).get("N", "0"))
            raise InsufficientStock(product_id, available, tons) from err
        return Decimal(resp["Attributes"]["currentStock"]["N"])

    def claim_depletion(self, sale_id: str, product_id: str) -> bool:
        """Idempotency marker: put if not exists. False when this sale already took this product."""
        try:
            self.client.put_item(
                TableName=self.settings.inventory_table,
                Item={"productId": {"S": _depletion_key(sale_id, product_id)}},
                ConditionExpression="attribute_not_exists(productId)",
            )
        except ClientError as err:
            if _conditional_failed(err):
                return False
            raise
        return True

    def release_depletion(self, sale_id: str, product_id: str) -> None:
        self.client.delete_item(
            TableName=self.settings.inventory_table,
            Key={"productId": {"S": _depletion_key(sale_id, product_id)}},
        )

    # ---------- audit / sales ----------
    def put_inbound_ticket(self, record: dict) -> str:
        ticket_id = record.get("ticketId") or str(uuid.uuid4())
        self.client.put_item(
            TableName=self.settings.inbound_tickets_table,
            Item=to_item({**record, "ticketId": ticket_id}),
        )
        return ticket_id

    def upsert_sale(self, sale_id: str, fields: dict, defaults: dict | None = None) -> None:
        """SET `fields`, and `defaults` only where the item does not have them yet."""
        names, values, clauses = {}, {}, []
        for i, (key, value) in enumerate(fields.items()):
            names[f"#f{i}"] = key
            values[f":f{i}"] = _serializer.serialize(_plain(value))
            clauses.append(f"#f{i} = :f{i}")
        for i, (key, value) in enumerate((defaults or {}).items()):
            names[f"#d{i}"] = key
            values[f":d{i}"] = _serializer.serialize(_plain(value))
            clauses.append(f"#d{i} = if_not_exists(#d{i}, :d{i})")
        if not clauses:
            return
        self.client.update_item(
            TableName=self.settings.sales_table,
            Key={"saleId": {"S": sale_id}},
            UpdateExpression="SET " + ", ".join(clauses),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    def put_commission(self, record: dict) -> bool:
        """Write once per saleId; False when a commission already exists."""
        try:
            self.client.put_item(
                TableName=self.settings.commissions_table,
                Item=to_item(record),
                ConditionExpression="attribute_not_exists(saleId)",
            )
        except ClientError as err:
            if _conditional_failed(err):
                return False
            raise
        return True

    # ---------- delivery ----------
    def active_trucks(self) -> list[str]:
        pages = self.client.get_paginator("scan").paginate(
            TableName=self.settings.trucks_table,
            FilterExpression="attribute_not_exists(active) OR active <> :false",
            ExpressionAttributeValues={":false": {"BOOL": False}},
        )
        return [item["truckId"]["S"] for page in pages for item in page.get("Items", [])]

    def bookings_on(self, date: str) -> list[dict]:
        pages = self.client.get_paginator("query").paginate(
            TableName=self.settings.delivery_schedule_table,
            IndexName=self.settings.delivery_date_index,
            KeyConditionExpression="#d = :d",
            FilterExpression="attribute_not_exists(#s) OR #s <> :cancelled",
            ExpressionAttributeNames={"#d": "date", "#s": "status"},
            ExpressionAttributeValues={":d": {"S": date}, ":cancelled": {"S": "cancelled"}},
        )
        return [from_item(item) for page in pages for item in page.get("Items", [])]
