class CustomerSyncError(Exception):
    """Base class for errors raised while handling a Clerk webhook."""


class ConfigurationError(CustomerSyncError):
    """The receiver is missing configuration it needs (signing secret, raw body)."""


class SignatureError(CustomerSyncError):
    """The payload is not provably signed by the configured secret."""


class PayloadShapeError(CustomerSyncError):
    """The payload is authentic but does not have the expected event shape."""


class StoreError(CustomerSyncError):
    """The customer store failed to answer a lookup or apply a write."""


class CustomerConflictError(StoreError):
    """A create was rejected because another customer already holds the clerk_id."""

    def __init__(self, clerk_id: str):
        super().__init__(f"customer with clerk_id {clerk_id} already exists")
        self.clerk_id = clerk_id
