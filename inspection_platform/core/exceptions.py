"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
get consistent HTTP status codes everywhere.

Usage:
    from inspection_platform.core.exceptions import NotFoundError, AccessDeniedError

    raise NotFoundError(resource="InspectionInstance", resource_id=42)
    raise AccessDeniedError("Organization scope required")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND out-of-scope
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "MasterTemplate").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class AccessDeniedError(Exception):
    """Raised when a caller acts outside the scope their role grants.

    The message is shown to the caller, so it must never name another
    tenant's identifiers.

    Maps to HTTP 403.
    """

    def __init__(self, message: str = "Access denied", *, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class InvalidAssignmentError(Exception):
    """Raised when an inspector or department is not eligible for a template.

    Maps to HTTP 422.
    """


class PreconditionFailedError(Exception):
    """Raised when an entity is not in the state an operation requires.

    Example: deleting an inspection that has already started.

    Maps to HTTP 409.
    """


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Raised by on-demand instance creation when the row clashes with an
    existing occurrence key; maps to HTTP 409. The scheduled sweep never
    raises it and reports the clash as an ``already_exists`` outcome instead.

    Args:
        resource: Model name.
        field: The unique key (column or column set) that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
