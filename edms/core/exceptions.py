"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes everywhere.

Usage:
    from edms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Request", resource_id="a1b2")
    raise ValidationError("subject is required", details={"subject": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Request", "User").
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
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write is based on a stale copy of the record.

    Maps to HTTP 409. The caller should re-read the record and retry the
    action against the current version.

    Args:
        resource: Model name.
        resource_id: Key of the conflicting record.
        expected: Version the caller based its change on.
        actual: Version currently stored.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected: int | None = None,
        actual: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
