"""
Platform-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once (see ``directory_hub.utils.errors``) and map them to
consistent HTTP status codes.  Callers branch on the exception type,
never on the message text.

Usage:
    from directory_hub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Directory", resource_id="d1")
    raise ValidationError("control 0 has invalid filter", details={"index": 0})
"""


class NotFoundError(Exception):
    """Raised when a directory, row, moderator domain or pending change is absent.

    Args:
        resource: Human-readable entity name (e.g. "Directory", "PendingChange").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a filter, column selector or request shape is malformed.

    Raised before any storage is touched.  Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when a role or permission check fails.

    ``reason`` names the failing check for the server log only; the HTTP
    layer always answers with a generic 403 body.
    """

    def __init__(self, reason: str = "permission denied") -> None:
        self.reason = reason
        super().__init__(reason)


class ConflictError(Exception):
    """Raised when an operation collides with existing state.

    Covers duplicate unique keys (directory IDs) and attempts to review a
    PendingChange that already reached a terminal status.  Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose current value conflicts.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} conflicts with existing state"
        super().__init__(msg)


class StorageError(Exception):
    """Base for failures of the underlying relational store.

    Always carries the operation that failed, and is raised ``from`` the
    driver / SQLAlchemy exception so the original cause stays attached.
    """

    kind = "STORAGE_ERROR"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{self.kind}: {operation}")


class StoreConnectionError(StorageError):
    """The store could not be reached or the transaction could not commit."""

    kind = "CONNECTION_ERROR"


class ConstraintError(StorageError):
    """A write violated a schema constraint (unique, foreign key, not-null)."""

    kind = "CONSTRAINT_VIOLATION"
