import base64
import hashlib
import hmac
import json
import time
from typing import Optional

import pytest
from botocore.exceptions import NoRegionError
from fastapi.testclient import TestClient

from customer_sync import customer_store
from customer_sync.app import app
from customer_sync.config import get_settings
from customer_sync.customer_store import (
    CustomerStore,
    get_customer_store,
    reset_in_memory_customer_store,
)

client = TestClient(app)

SECRET = "whsec_test"


def _signed_clerk_headers(raw_payload: bytes, timestamp: Optional[int] = None, msg_id: str = "msg_1"):
    ts_value = timestamp if timestamp is not None else int(time.time())
    key = base64.b64decode(SECRET[len("whsec_") :])
    digest = hmac.new(key, f"{msg_id}.{ts_value}.".encode("utf-8") + raw_payload, hashlib.sha256).digest()
    return {
        "content-type": "application/json",
        "svix-id": msg_id,
        "svix-timestamp": str(ts_value),
        "svix-signature": "v1," + base64.b64encode(digest).decode("utf-8"),
    }


def _raw(event) -> bytes:
    return json.dumps(event, separators=(",", ":")).encode("utf-8")


def _user_event(event_type: str = "user.created", **data):
    payload = {
        "id": "u1",
        "email_addresses": [{"email_address": "a@x.com"}],
        "first_name": "A",
        "last_name": "B",
    }
    payload.update(data)
    return {"type": event_type, "data": payload}


def _post(event, timestamp: Optional[int] = None):
    raw_payload = _raw(event)
    return client.post("/clerk-sync", content=raw_payload, headers=_signed_clerk_headers(raw_payload, timestamp))


class _NoCallStore(CustomerStore):
    def __init__(self):
        self.calls = 0

    def find_one(self, field, value):
        self.calls += 1
        raise AssertionError("store lookup not expected")

    def create(self, data):
        self.calls += 1
        raise AssertionError("store create not expected")

    def update(self, customer_id, data):
        self.calls += 1
        raise AssertionError("store update not expected")


class _UnavailableStore(CustomerStore):
    def find_one(self, field, value):
        raise TimeoutError("dynamodb endpoint timed out, secret=whsec_test")

    def create(self, data):
        raise TimeoutError("dynamodb endpoint timed out")

    def update(self, customer_id, data):
        raise TimeoutError("dynamodb endpoint timed out")


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    monkeypatch.setenv("CLERK_WEBHOOK_SECRET", SECRET)
    monkeypatch.setenv("USE_IN_MEMORY_CUSTOMER_STORE", "true")
    get_settings.cache_clear()
    reset_in_memory_customer_store()
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def _customers():
    return list(get_customer_store().items.values())


def test_user_created_with_valid_signature_creates_customer():
    response = _post(_user_event())

    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "created"}
    customers = _customers()
    assert len(customers) == 1
    customer = customers[0]
    assert customer.clerk_id == "u1"
    assert customer.email == "a@x.com"
    assert customer.first_name == "A"
    assert customer.last_name == "B"
    assert customer.username == "A B"


def test_signature_over_reserialized_body_is_rejected():
    event = _user_event()
    raw_payload = _raw(event)
    headers = _signed_clerk_headers(json.dumps(event, indent=2).encode("utf-8"))

    response = client.post("/clerk-sync", content=raw_payload, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook signature"
    assert _customers() == []


def test_stale_timestamp_is_rejected():
    response = _post(_user_event(), timestamp=int(time.time()) - 600)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook signature"
    assert _customers() == []


def test_missing_signature_headers_are_rejected_without_store_access():
    store = _NoCallStore()
    app.dependency_overrides[get_customer_store] = lambda: store

    response = client.post("/clerk-sync", content=_raw(_user_event()), headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert store.calls == 0


def test_user_deleted_keeps_customer_unchanged():
    assert _post(_user_event()).status_code == 200
    before = _customers()[0]

    response = _post({"type": "user.deleted", "data": {"id": "u1", "deleted": True}})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "skipped"}
    customers = _customers()
    assert len(customers) == 1
    assert customers[0] == before


def test_replayed_user_created_keeps_one_customer():
    first = _post(_user_event())
    second = _post(_user_event())

    assert first.json()["status"] == "created"
    assert second.json()["status"] == "updated"
    assert len(_customers()) == 1


def test_user_updated_falls_back_to_email_match():
    get_customer_store().create({"email": "a@x.com", "first_name": "Legacy"})

    response = _post(_user_event("user.updated", id="u2", first_name="Ada"))

    assert response.status_code == 200
    assert response.json()["status"] == "updated"
    customers = _customers()
    assert len(customers) == 1
    assert customers[0].clerk_id == "u2"
    assert customers[0].first_name == "Ada"


def test_unknown_event_type_is_acknowledged_without_store_access():
    store = _NoCallStore()
    app.dependency_overrides[get_customer_store] = lambda: store

    response = _post({"type": "session.created", "data": {"id": "sess_1", "user_id": "u1"}})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "ignored"}
    assert store.calls == 0


def test_event_without_object_data_is_invalid_payload():
    response = _post({"type": "user.created", "data": "u1"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


def test_user_created_without_id_or_email_is_invalid_payload():
    store = _NoCallStore()
    app.dependency_overrides[get_customer_store] = lambda: store

    response = _post(_user_event(id=None, email_addresses=[]))

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"
    assert store.calls == 0


def test_missing_secret_is_a_server_error(monkeypatch):
    monkeypatch.delenv("CLERK_WEBHOOK_SECRET", raising=False)
    get_settings.cache_clear()

    response = _post(_user_event())

    assert response.status_code == 500
    assert response.json()["detail"] == "Webhook not configured"
    assert _customers() == []


def test_store_failure_is_a_server_error_without_internal_detail():
    app.dependency_overrides[get_customer_store] = lambda: _UnavailableStore()

    response = _post(_user_event())

    assert response.status_code == 500
    assert response.json() == {"detail": "Webhook handler error"}
    assert "whsec" not in response.text


def test_configured_table_that_cannot_be_opened_is_a_server_error(monkeypatch):
    monkeypatch.setenv("CUSTOMERS_TABLE", "customers-prod")
    monkeypatch.setenv("USE_IN_MEMORY_CUSTOMER_STORE", "false")
    get_settings.cache_clear()

    def _no_region(**kwargs):
        raise NoRegionError()

    monkeypatch.setattr("customer_sync.customer_store.DynamoCustomerStore", _no_region)

    response = _post(_user_event())

    assert response.status_code == 500
    assert response.json() == {"detail": "Webhook handler error"}
    assert customer_store._IN_MEMORY_CUSTOMER_STORE.count() == 0
