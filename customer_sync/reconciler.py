import logging
from typing import Any, Dict, Optional

from customer_sync.customer_store import CustomerStore
from customer_sync.errors import CustomerConflictError, PayloadShapeError, StoreError
from customer_sync.schemas import (
    ClerkEventType,
    CustomerRecord,
    SyncOutcome,
    SyncStatus,
    UserPayload,
    VerifiedEvent,
)

logger = logging.getLogger("customer_sync.reconciler")


class CustomerReconciler:
    """Mirrors Clerk user lifecycle events into the customer store.

    Each event resolves to at most one customer: by ``clerk_id`` first, then by
    email for customers created before they had a Clerk id. Created and updated
    events upsert that customer; deleted events are logged and left alone until
    the store grows a soft-delete flag; every other event type is ignored.
    """

    def __init__(self, store: CustomerStore):
        self._store = store

    def reconcile(self, event: VerifiedEvent) -> SyncOutcome:
        if event.event_type in (ClerkEventType.USER_CREATED, ClerkEventType.USER_UPDATED):
            return self._upsert(event.subject)
        if event.event_type == ClerkEventType.USER_DELETED:
            return self._skip_delete(event.subject)

        logger.debug("Clerk webhook received unsupported event type: %s", event.raw_type)
        return SyncOutcome(status=SyncStatus.IGNORED, reason=f"unsupported event type {event.raw_type}")

    def _find_existing(self, subject: UserPayload) -> Optional[CustomerRecord]:
        existing = None
        if subject.external_id:
            existing = self._call_store(self._store.find_one, "clerk_id", subject.external_id)
        if existing is None and subject.primary_email:
            existing = self._call_store(self._store.find_one, "email", subject.primary_email)
        return existing

    def _upsert(self, subject: Optional[UserPayload]) -> SyncOutcome:
        if subject is None or not subject.has_identity:
            raise PayloadShapeError("user event has neither an id nor an email address")

        data = _customer_fields(subject)
        existing = self._find_existing(subject)
        if existing is None:
            try:
                created = self._call_store(self._store.create, data)
            except CustomerConflictError:
                # A concurrent delivery created the customer between lookup and create.
                existing = self._find_existing(subject)
                if existing is None:
                    raise
            else:
                logger.info("Clerk user created in customer store (clerk_id=%s)", subject.external_id or "n/a")
                return SyncOutcome(status=SyncStatus.CREATED, customer_id=created.id)

        updated = self._call_store(self._store.update, existing.id, data)
        logger.info("Clerk user updated in customer store (clerk_id=%s)", subject.external_id or "n/a")
        return SyncOutcome(status=SyncStatus.UPDATED, customer_id=updated.id)

    def _skip_delete(self, subject: Optional[UserPayload]) -> SyncOutcome:
        if subject is None or not subject.has_identity:
            logger.warning("Clerk user deleted event without an id or email, skipping")
            return SyncOutcome(status=SyncStatus.SKIPPED, reason="no identity")

        existing = self._find_existing(subject)
        if existing is None:
            logger.info("Clerk user deleted event for unknown customer (clerk_id=%s)", subject.external_id or "n/a")
            return SyncOutcome(status=SyncStatus.SKIPPED, reason="no matching customer")

        logger.info(
            "Clerk user deleted event received for clerk_id=%s, skipping actual delete",
            subject.external_id or "n/a",
        )
        return SyncOutcome(status=SyncStatus.SKIPPED, customer_id=existing.id, reason="delete not applied")

    @staticmethod
    def _call_store(operation, *args):
        try:
            return operation(*args)
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"customer store {operation.__name__} failed") from exc


def _customer_fields(subject: UserPayload) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "first_name": subject.first_name,
        "last_name": subject.last_name,
        "username": subject.display_name,
        "avatar": subject.avatar_url,
    }
    # An empty id or email on the event never clears the stored value.
    if subject.external_id:
        data["clerk_id"] = subject.external_id
    if subject.primary_email:
        data["email"] = subject.primary_email
    return data
