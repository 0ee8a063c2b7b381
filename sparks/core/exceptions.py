"""
Engine-wide exception hierarchy.

Services raise these types and blueprints register handlers against them
once, so every endpoint maps the same failure to the same HTTP status.

Usage:
    from sparks.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Immersion", resource_id=42)
    raise ValidationError("template_id is required", details={"template_id": "missing"})

Propagation policy:
    - ValidationError / NotFoundError abort the whole call (top-of-call checks).
    - TransientIOError is caught per unit of work (one template row, one
      recipient group) by the batch services and never aborts a batch.
    - ConfigurationError is fatal only where the missing setting is needed
      (e.g. SMTP credentials for a real notification send).
"""


class NotFoundError(Exception):
    """Raised when a referenced immersion, template or task does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Immersion", "ChecklistTemplate").
        resource_id: The PK that was looked up. Included in logs and message.
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
    """Raised when a required field is missing or malformed.

    Never auto-corrected; always surfaced to the caller. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an insert would violate a unique constraint. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class TransientIOError(Exception):
    """Raised by a collaborator store when the underlying call failed.

    Args:
        operation: Store operation name (e.g. "insert_tasks", "query_recent").
        cause: The original exception, kept for logging.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"{operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class ConfigurationError(Exception):
    """Raised when a required setting is absent (e.g. MAIL_SERVER for send mode)."""

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        super().__init__(message or f"{setting} is not configured")
