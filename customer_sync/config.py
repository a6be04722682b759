import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

_CUSTOMERS_CLERK_ID_INDEX = "customers_by_clerk_id"
_CUSTOMERS_EMAIL_INDEX = "customers_by_email"


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_text(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


@dataclass(frozen=True)
class ClerkSyncSettings:
    clerk_webhook_secret: str = ""
    customers_table: str = ""
    use_in_memory_customer_store: bool = False
    clerk_id_index: str = _CUSTOMERS_CLERK_ID_INDEX
    email_index: str = _CUSTOMERS_EMAIL_INDEX


def load_settings() -> ClerkSyncSettings:
    return ClerkSyncSettings(
        clerk_webhook_secret=_env_text("CLERK_WEBHOOK_SECRET"),
        customers_table=_env_text("CUSTOMERS_TABLE"),
        use_in_memory_customer_store=_as_bool(os.environ.get("USE_IN_MEMORY_CUSTOMER_STORE")),
        clerk_id_index=_env_text("CUSTOMERS_CLERK_ID_INDEX") or _CUSTOMERS_CLERK_ID_INDEX,
        email_index=_env_text("CUSTOMERS_EMAIL_INDEX") or _CUSTOMERS_EMAIL_INDEX,
    )


@lru_cache(maxsize=1)
def get_settings() -> ClerkSyncSettings:
    return load_settings()
