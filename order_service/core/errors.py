"""
Order service error taxonomy.

Every failure that leaves the order service is an ``OrderServiceError``
carrying a ``kind``, an HTTP-style ``status_code`` and a message. The RPC
server and the HTTP exception handler both render it with ``to_payload``.
"""
from enum import Enum

class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class OrderServiceError(Exception):
    kind = ErrorKind.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {
            "status": self.status_code,
            "message": self.message,
            "kind": self.kind.value,
        }


class OrderNotFoundError(OrderServiceError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order with id {order_id} not found")
        self.order_id = order_id


class ValidationFailedError(OrderServiceError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 400


class InvalidRequestError(ValidationFailedError):
    """Malformed command payload or unknown command."""


class ProductValidationError(ValidationFailedError):
    """Unknown product ids or an unreachable product service."""


class PersistenceError(OrderServiceError):
    kind = ErrorKind.PERSISTENCE_ERROR
    status_code = 500


class ProductServiceError(Exception):
    """The product service rejected the request or could not be reached."""
