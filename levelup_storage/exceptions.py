"""
Custom exceptions for tiered storage.

Both backends and the router raise these exceptions so callers
get consistent error handling regardless of which store served them.
"""


class LevelUpStorageError(Exception):
    """Base exception for all storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageIOError(LevelUpStorageError):
    """Raised when a local storage I/O operation fails."""

    def __init__(self, operation: str, table: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if table:
            details["table"] = table
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if table:
            message += f" on {table}"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.table = table
        self.cause = cause


class StorageConnectionError(LevelUpStorageError):
    """Raised when a connection to a store cannot be established.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class RemoteStoreError(LevelUpStorageError):
    """Raised when a call to the remote store fails.

    ``retryable`` separates failures worth trying again later (network loss,
    throttling, expired credentials) from failures that will repeat with the
    same payload (validation, constraint violations).
    """

    retryable = False

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"retryable": self.retryable}
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.operation = operation
        self.status_code = status_code
        self.cause = cause


class TransientRemoteError(RemoteStoreError):
    """Network loss, timeout or throttling. Retry later."""

    retryable = True


class RemoteValidationError(RemoteStoreError):
    """The remote store rejected the payload. Do not retry unchanged."""

    retryable = False


class AuthenticationError(RemoteStoreError):
    """Raised when authentication to the remote store fails or expires."""

    retryable = True

    def __init__(self, endpoint: str, reason: str | None = None, status_code: int | None = None):
        super().__init__(
            f"Authentication failed for {endpoint}",
            operation="authenticate",
            status_code=status_code,
        )
        if reason:
            self.details["reason"] = reason
        self.details["endpoint"] = endpoint
        self.endpoint = endpoint
        self.reason = reason


class RecordExistsError(LevelUpStorageError):
    """Raised when inserting a record whose identifier is already taken."""

    def __init__(self, table: str, record_id: str):
        super().__init__(
            f"Record already exists in {table}: {record_id}",
            {"table": table, "record_id": record_id},
        )
        self.table = table
        self.record_id = record_id


class ValidationError(LevelUpStorageError):
    """Raised when record or option validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotEntitledError(LevelUpStorageError):
    """Raised when a cloud-only operation is attempted on the free tier."""

    def __init__(self, user_id: str, plan: str):
        super().__init__(
            f"Cloud storage not available for plan '{plan}'",
            {"user_id": user_id, "plan": plan},
        )
        self.user_id = user_id
        self.plan = plan


class EntitlementNotLoadedError(LevelUpStorageError):
    """Raised when the entitlement context is read before it was loaded."""

    def __init__(self) -> None:
        super().__init__("Subscription not loaded. Call load_subscription() first.")
