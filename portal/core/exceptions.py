"""
Portal-wide exception hierarchy.

Every service raises one of these types. Blueprints register handlers
against them once (see ``portal.utils.errors.register_error_handlers``)
and get consistent HTTP status codes and error envelopes everywhere.

    NotFoundError       404  record does not exist
    ValidationError     422  malformed input, rejected before any write
    ConflictingState    409  status precondition not met (retry after refresh)
    InvalidTransition   409  out-of-order revision request status change
    DependencyFailure   ---  external collaborator failed; attached as a warning
    CascadeFailure      500  teardown Phase 1 failed, nothing was deleted

Usage:
    from portal.core.exceptions import ConflictingState, ValidationError

    raise ValidationError("description is required", details={"description": "blank"})
    raise ConflictingState("Delivery", delivery.id, delivery.status, expected=("delivered",))
"""


class PortalError(Exception):
    """Base class for every error the service layer raises on purpose."""

    code = "ERR_INTERNAL"
    http_status = 500

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class NotFoundError(PortalError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Delivery").
        resource_id: The key that was looked up.
    """

    code = "ERR_NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PortalError):
    """Raised when input is malformed (empty reasons, blank description, ...).

    Always raised before any write, so the caller can fix the input and retry.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown (field name -> problem).
    """

    code = "ERR_VALIDATION"
    http_status = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.details:
            body["details"] = self.details
        return body


class ConflictingState(PortalError):
    """Raised when an operation's precondition on current status was not met.

    Also raised when the store detects a concurrent write (optimistic
    version mismatch): the loser must refresh and retry, never overwrite.

    Args:
        resource: Entity name.
        resource_id: Key of the record.
        current: Status observed when the precondition was checked.
        expected: Statuses the operation would have accepted.
        reason: Optional override for the message tail.
    """

    code = "ERR_CONFLICT_STATE"
    http_status = 409

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        current: str | None,
        expected: tuple[str, ...] | list[str] = (),
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.expected = tuple(expected)
        msg = f"{resource} id={resource_id} is '{current}'"
        if reason:
            msg += f": {reason}"
        elif self.expected:
            msg += f", expected one of {', '.join(self.expected)}"
        super().__init__(msg)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["details"] = {
            "current_status": self.current_status,
            "expected": list(self.expected),
        }
        return body


class InvalidTransition(PortalError):
    """Raised when a RevisionRequest status change is not in the transition table."""

    code = "ERR_INVALID_TRANSITION"
    http_status = 409

    def __init__(self, resource_id: str, current: str, requested: str) -> None:
        self.resource_id = resource_id
        self.current_status = current
        self.requested_status = requested
        super().__init__(
            f"Cannot move revision request {resource_id} from '{current}' to '{requested}'"
        )


class DependencyFailure(PortalError):
    """An external collaborator (notification dispatcher, identity provider) failed.

    Services never let this escape a committed operation; they attach
    ``to_warning()`` to the operation result instead.

    Args:
        dependency: Short collaborator name ("notification", "identity_provider").
        message: What went wrong.
        context: Optional identifiers useful for the log line.
    """

    code = "ERR_DEPENDENCY"
    http_status = 502

    def __init__(self, dependency: str, message: str, context: dict | None = None) -> None:
        self.dependency = dependency
        self.context = context or {}
        super().__init__(f"{dependency}: {message}")
        self.detail = message

    def to_warning(self) -> dict:
        warning = {"dependency": self.dependency, "message": self.detail}
        if self.context:
            warning["context"] = self.context
        return warning


class CascadeFailure(PortalError):
    """Teardown Phase 1 failed. The transaction was rolled back; nothing is deleted."""

    code = "ERR_CASCADE"
    http_status = 500

    def __init__(self, client_id: str, reason: str) -> None:
        self.client_id = client_id
        self.reason = reason
        super().__init__(f"Teardown of client {client_id} failed: {reason}")
