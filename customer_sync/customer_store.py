import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

try:
    import boto3
    from boto3.dynamodb.conditions import Attr, Key
    from botocore.exceptions import BotoCoreError, ClientError
except ImportError:  # pragma: no cover - boto3 available in Lambda
    boto3 = None
    Attr = None
    Key = None
    BotoCoreError = None
    ClientError = None

from customer_sync.config import get_settings
from customer_sync.errors import CustomerConflictError, StoreError
from customer_sync.schemas import CustomerRecord

logger = logging.getLogger("customer_sync.customer_store")

LOOKUP_FIELDS = ("clerk_id", "email")
# Index key attributes must be absent rather than null in DynamoDB.
_SPARSE_ATTRS = ("clerk_id", "email")
# Query errors that mean the lookup index does not exist on this table.
_MISSING_INDEX_ERROR_CODES = {"ValidationException", "ResourceNotFoundException"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_lookup_field(field: str):
    if field not in LOOKUP_FIELDS:
        raise ValueError(f"unsupported lookup field: {field}")


class CustomerStore(ABC):
    @abstractmethod
    def find_one(self, field: str, value: str) -> Optional[CustomerRecord]:
        """Return the first customer whose ``field`` equals ``value``."""
        raise NotImplementedError

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> CustomerRecord:
        raise NotImplementedError

    @abstractmethod
    def update(self, customer_id: str, data: Dict[str, Any]) -> CustomerRecord:
        raise NotImplementedError


class InMemoryCustomerStore(CustomerStore):
    def __init__(self):
        self.items: Dict[str, CustomerRecord] = {}
        self._lock = threading.Lock()

    def find_one(self, field: str, value: str) -> Optional[CustomerRecord]:
        _check_lookup_field(field)
        if not value:
            return None
        with self._lock:
            for customer in self.items.values():
                if getattr(customer, field) == value:
                    return customer
        return None

    def create(self, data: Dict[str, Any]) -> CustomerRecord:
        clerk_id = data.get("clerk_id")
        with self._lock:
            if clerk_id and any(customer.clerk_id == clerk_id for customer in self.items.values()):
                raise CustomerConflictError(clerk_id)
            now = utc_now()
            customer = CustomerRecord(id=str(uuid4()), created_at=now, updated_at=now, **data)
            self.items[customer.id] = customer
        return customer

    def update(self, customer_id: str, data: Dict[str, Any]) -> CustomerRecord:
        with self._lock:
            existing = self.items.get(customer_id)
            if existing is None:
                raise StoreError(f"customer {customer_id} not found")
            updated = existing.model_copy(update={**data, "updated_at": utc_now()})
            self.items[customer_id] = updated
        return updated

    def count(self) -> int:
        return len(self.items)


class DynamoCustomerStore(CustomerStore):
    def __init__(self, table_name: str, clerk_id_index: str, email_index: str):
        if boto3 is None:
            raise RuntimeError("boto3 not available")
        self._table = boto3.resource("dynamodb").Table(table_name)
        self._index_names = {"clerk_id": clerk_id_index, "email": email_index}

    @staticmethod
    def _to_item(customer: CustomerRecord) -> Dict[str, Any]:
        item = customer.model_dump(mode="json")
        for attr in _SPARSE_ATTRS:
            if not item.get(attr):
                item.pop(attr, None)
        return item

    def _query_index(self, field: str, value: str) -> Optional[List[CustomerRecord]]:
        try:
            response = self._table.query(
                IndexName=self._index_names[field],
                KeyConditionExpression=Key(field).eq(value),
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_INDEX_ERROR_CODES:
                return None
            raise
        return [CustomerRecord.model_validate(item) for item in response.get("Items", [])]

    def _scan_first(self, field: str, value: str) -> Optional[CustomerRecord]:
        scan_kwargs = {"FilterExpression": Attr(field).eq(value)}
        while True:
            response = self._table.scan(**scan_kwargs)
            items = response.get("Items", [])
            if items:
                return CustomerRecord.model_validate(items[0])
            if "LastEvaluatedKey" not in response:
                return None
            scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    def find_one(self, field: str, value: str) -> Optional[CustomerRecord]:
        _check_lookup_field(field)
        value = (value or "").strip()
        if not value:
            return None

        try:
            indexed = self._query_index(field, value)
            if indexed is not None:
                return indexed[0] if indexed else None
            # Tables provisioned without the lookup index.
            return self._scan_first(field, value)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"customer lookup by {field} failed") from exc

    def create(self, data: Dict[str, Any]) -> CustomerRecord:
        now = utc_now()
        customer = CustomerRecord(id=str(uuid4()), created_at=now, updated_at=now, **data)
        try:
            self._table.put_item(
                Item=self._to_item(customer),
                ConditionExpression="attribute_not_exists(id)",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreError("customer create failed") from exc
        return customer

    def update(self, customer_id: str, data: Dict[str, Any]) -> CustomerRecord:
        try:
            item = self._table.get_item(Key={"id": customer_id}).get("Item")
            if not item:
                raise StoreError(f"customer {customer_id} not found")
            existing = CustomerRecord.model_validate(item)
            updated = existing.model_copy(update={**data, "updated_at": utc_now()})
            self._table.put_item(Item=self._to_item(updated))
        except (BotoCoreError, ClientError) as exc:
            raise StoreError("customer update failed") from exc
        return updated


class UnavailableCustomerStore(CustomerStore):
    """Stands in for a configured table that could not be opened; every call fails."""

    def __init__(self, table_name: str, cause: Exception):
        self.table_name = table_name
        self.cause = cause

    def _fail(self):
        raise StoreError(f"customer table {self.table_name} is unavailable") from self.cause

    def find_one(self, field: str, value: str) -> Optional[CustomerRecord]:
        self._fail()

    def create(self, data: Dict[str, Any]) -> CustomerRecord:
        self._fail()

    def update(self, customer_id: str, data: Dict[str, Any]) -> CustomerRecord:
        self._fail()


_IN_MEMORY_CUSTOMER_STORE = InMemoryCustomerStore()


def get_customer_store() -> CustomerStore:
    settings = get_settings()
    if settings.use_in_memory_customer_store or not settings.customers_table:
        return _IN_MEMORY_CUSTOMER_STORE

    try:
        return DynamoCustomerStore(
            table_name=settings.customers_table,
            clerk_id_index=settings.clerk_id_index,
            email_index=settings.email_index,
        )
    except Exception as exc:
        # A configured table never degrades to the in-memory store.
        logger.error("DynamoDB customer store %s unavailable", settings.customers_table, exc_info=True)
        return UnavailableCustomerStore(settings.customers_table, exc)


def reset_in_memory_customer_store():
    _IN_MEMORY_CUSTOMER_STORE.items.clear()
