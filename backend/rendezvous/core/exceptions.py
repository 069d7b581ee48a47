class RendezvousError(Exception):
    """Base exception for the Rendezvous service."""

    pass


class ClientError(RendezvousError):
    """Error surfaced verbatim to the caller with an explicit HTTP status."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ForbiddenError(ClientError):
    """Raised on a role mismatch or when the caller does not own the appointment."""

    status_code = 403


class NotFoundError(ClientError):
    """Raised when an appointment or user record does not exist."""

    status_code = 404


class InvalidTransitionError(ClientError):
    """Raised when an operation is not legal from the appointment's current status."""

    status_code = 400


class BadInputError(ClientError):
    """Raised when request values fail business validation."""

    status_code = 400


class PaymentRequiredError(ClientError):
    """Raised when the payment processor did not return an authorization handle."""

    status_code = 402


class ConflictError(ClientError):
    """Raised when the appointment changed between read and conditional write."""

    status_code = 409


class PaymentGatewayError(ClientError):
    """Raised when a payment processor call fails during a user action."""

    status_code = 502

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Payment processor error during {operation}: {detail}")
