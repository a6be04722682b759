from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClerkEventType(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    OTHER = "other"

    @classmethod
    def from_raw(cls, raw_type: str) -> "ClerkEventType":
        for member in (cls.USER_CREATED, cls.USER_UPDATED, cls.USER_DELETED):
            if member.value == raw_type:
                return member
        return cls.OTHER


USER_EVENT_TYPES = {
    ClerkEventType.USER_CREATED,
    ClerkEventType.USER_UPDATED,
    ClerkEventType.USER_DELETED,
}


class ClerkWebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    data: Dict[str, Any]
    object: Optional[str] = None


class ClerkEmailAddress(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email_address: Optional[str] = None


class ClerkUserData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email_addresses: Optional[List[ClerkEmailAddress]] = None
    primary_email_address_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    image_url: Optional[str] = None


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


class UserPayload(BaseModel):
    """Canonical user fields extracted from a Clerk ``user.*`` event."""

    external_id: str = ""
    primary_email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    avatar_url: Optional[str] = None

    @classmethod
    def from_clerk(cls, data: ClerkUserData) -> "UserPayload":
        first_name = data.first_name or ""
        last_name = data.last_name or ""
        display_name = data.username or f"{first_name} {last_name}".strip()
        return cls(
            external_id=(data.id or "").strip(),
            primary_email=_primary_email(data),
            first_name=first_name,
            last_name=last_name,
            display_name=display_name,
            avatar_url=_optional_text(data.image_url),
        )

    @property
    def has_identity(self) -> bool:
        return bool(self.external_id or self.primary_email)


def _primary_email(data: ClerkUserData) -> Optional[str]:
    addresses = data.email_addresses or []
    if not addresses:
        return None
    if data.primary_email_address_id:
        for address in addresses:
            if address.id == data.primary_email_address_id and _optional_text(address.email_address):
                return _optional_text(address.email_address)
    return _optional_text(addresses[0].email_address)


class VerifiedEvent(BaseModel):
    event_type: ClerkEventType
    raw_type: str
    svix_id: Optional[str] = None
    subject: Optional[UserPayload] = None


class CustomerRecord(BaseModel):
    id: str
    clerk_id: Optional[str] = None
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    avatar: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    # Reserved for soft-delete; user.deleted events never set it yet.
    deleted_at: Optional[datetime] = None


class SyncStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    IGNORED = "ignored"


class SyncOutcome(BaseModel):
    status: SyncStatus
    customer_id: Optional[str] = None
    reason: Optional[str] = None


class ClerkSyncResponse(BaseModel):
    ok: bool = True
    status: SyncStatus
