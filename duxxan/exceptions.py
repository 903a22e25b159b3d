from typing import Any, Optional


class ServiceError(Exception):
    """Base for errors that map onto an HTTP response"""

    status_code = 500

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationFailed(ServiceError):
    status_code = 400


class PaymentVerificationFailed(ServiceError):
    status_code = 400


class NotFound(ServiceError):
    status_code = 404


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class Conflict(ServiceError):
    status_code = 409


class RaffleCancelled(Conflict):
    """Settlement refused: the raffle was cancelled before a winner was drawn"""


class NoTicketsError(Exception):
    """Raised by the winner selector when nothing was sold"""


class CircuitOpenError(Exception):
    pass


class ChainRPCError(Exception):
    pass
