"""
Error kinds raised by the ordering core.

Every kind carries an HTTP status so the API layer can turn it into a
rejected response with a single exception handler.
"""


class OrderingError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(OrderingError):
    """Malformed or missing input, e.g. a blank delivery address."""
    status_code = 400


class EmptyCart(OrderingError):
    status_code = 400


class InvalidTransition(OrderingError):
    """Status change not permitted from the order's current status."""
    status_code = 409


class NotFound(OrderingError):
    status_code = 404


class AssignmentConflict(OrderingError):
    """Delivery order already claimed by another staff member."""
    status_code = 409


class PermissionDenied(OrderingError):
    status_code = 403


class AuthenticationError(OrderingError):
    status_code = 401


class ExternalWriteFailure(OrderingError):
    """Record store or identity call failed."""
    status_code = 502
