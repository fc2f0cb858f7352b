"""
Custom exceptions for scope synchronization.

All store adapters and sync components raise these exceptions
so callers can tell "absent" apart from real backend failures.
"""


class ScopeSyncError(Exception):
    """Base exception for all scope sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RecordNotFoundError(ScopeSyncError):
    """Raised when no object exists at a key."""

    def __init__(self, key: str, scope: str | None = None):
        details = {"key": key}
        if scope:
            details["scope"] = scope
        super().__init__(f"Not Found: {key}", details)
        self.key = key
        self.scope = scope


class ScopeStorageError(ScopeSyncError):
    """Raised when the remote store fails for any reason other than not-found."""

    def __init__(
        self,
        operation: str,
        key: str | None = None,
        scope: str | None = None,
        status: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"operation": operation}
        if key is not None:
            details["key"] = key
        if scope:
            details["scope"] = scope
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)
        message = f"Storage error during {operation}"
        if key is not None:
            message += f": {key}"
        if status is not None:
            message += f" (HTTP {status})"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.scope = scope
        self.status = status
        self.cause = cause


class StorageConnectionError(ScopeStorageError):
    """Raised when the remote store cannot be reached.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"operation": "connect", "endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        ScopeSyncError.__init__(self, f"Connection failed to {endpoint}", details)
        self.operation = "connect"
        self.key = None
        self.scope = None
        self.status = None
        self.cause = cause
        self.endpoint = endpoint


class ValidationError(ScopeSyncError):
    """Raised when a wire object or an update cannot be turned into a record."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotConnectedError(ScopeSyncError):
    """Raised when a write is attempted while the store is not connected."""

    def __init__(self, operation: str):
        super().__init__(
            f"Remote storage is not connected; cannot {operation}",
            {"operation": operation},
        )
        self.operation = operation


class InvalidStateTransitionError(ScopeSyncError):
    """Raised when the connection state machine is driven out of order."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move from {current} to {target}",
            {"current": current, "target": target},
        )
        self.current = current
        self.target = target


class UnknownScopeError(ScopeSyncError):
    """Raised when an operation names a scope that is not tracked or not available."""

    def __init__(self, scope: str):
        super().__init__(f"Unknown or unavailable scope: {scope}", {"scope": scope})
        self.scope = scope


class ConfigurationError(ScopeSyncError):
    """Raised when sync configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason
