"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    kind = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        *,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        """Initialize exception with message, status code and state context."""
        self.message = message
        self.status_code = status_code
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    kind = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    kind = "forbidden"

    def __init__(
        self,
        message: str = "Forbidden",
        *,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        """Initialize with 403 status code."""
        super().__init__(
            message,
            status_code=403,
            current_status=current_status,
            requested_status=requested_status,
        )


class InvalidTransitionException(AppException):
    """Appointment cannot move from its current status to the requested one."""

    kind = "invalid_transition"

    def __init__(
        self,
        message: str = "Invalid status transition",
        *,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        """Initialize with 409 status code."""
        super().__init__(
            message,
            status_code=409,
            current_status=current_status,
            requested_status=requested_status,
        )


class SlotConflictException(AppException):
    """Requested slot is already held by an active appointment."""

    kind = "slot_conflict"

    def __init__(self, message: str = "Time slot is already booked", scope: str = "practitioner"):
        """Initialize with 409 status code and the conflicting scope."""
        self.scope = scope
        super().__init__(message, status_code=409)


class PreconditionFailedException(AppException):
    """A transition precondition (such as a paid advance) is not met."""

    kind = "precondition_failed"

    def __init__(
        self,
        message: str = "Precondition failed",
        *,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        """Initialize with 412 status code."""
        super().__init__(
            message,
            status_code=412,
            current_status=current_status,
            requested_status=requested_status,
        )


class ValidationException(AppException):
    """Validation error exception."""

    kind = "validation_error"

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class ExternalGatewayException(AppException):
    """Payment gateway call failed or returned an unverifiable result."""

    kind = "external_gateway_error"

    def __init__(self, message: str = "Payment gateway error"):
        """Initialize with 502 status code."""
        super().__init__(message, status_code=502)
