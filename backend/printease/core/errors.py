"""
Error taxonomy shared by the storage, service and API layers.

Every error carries a human-readable message plus keyword context that is
logged and returned to the caller. The API layer maps each family to one
HTTP status code.
"""

from typing import Any, Iterable, Optional


class PrintEaseError(Exception):
    """Base exception for all service errors."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(PrintEaseError):
    """Raised when an operation targets a record that does not exist."""

    status_code = 404
    error = "Not Found"


class OrderNotFoundError(NotFoundError):
    """Raised when an order id is unknown."""

    def __init__(self, order_id: str, **context: Any):
        super().__init__(f"Order {order_id} not found", order_id=order_id, **context)


class DealerNotFoundError(NotFoundError):
    """Raised when a dealer id is unknown."""

    def __init__(self, dealer_id: str, **context: Any):
        super().__init__(f"Dealer {dealer_id} not found", dealer_id=dealer_id, **context)


class NotificationNotFoundError(NotFoundError):
    """Raised when a notification id is unknown."""

    def __init__(self, notification_id: str, **context: Any):
        super().__init__(
            f"Notification {notification_id} not found",
            notification_id=notification_id,
            **context,
        )


class BatchNotFoundError(NotFoundError):
    """Raised when a batch id is unknown."""

    def __init__(self, batch_id: str, **context: Any):
        super().__init__(f"Batch {batch_id} not found", batch_id=batch_id, **context)


class MessageNotFoundError(NotFoundError):
    """Raised when a chat message id is unknown within an order."""

    def __init__(self, order_id: str, message_id: str, **context: Any):
        super().__init__(
            f"Message {message_id} not found in order {order_id}",
            order_id=order_id,
            message_id=message_id,
            **context,
        )


class ValidationFailure(PrintEaseError):
    """Raised when required input is missing or invalid, before any mutation."""

    status_code = 422
    error = "Validation Error"


class OrderValidationError(ValidationFailure):
    """Raised when order operation input fails validation."""


class InvalidTransitionError(PrintEaseError):
    """Raised when an order is not in a state that permits the operation."""

    status_code = 409
    error = "Invalid Transition"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        target_state: Optional[str] = None,
        allowed: Optional[Iterable[str]] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=current_state,
            target_state=target_state,
            allowed_transitions=sorted(allowed) if allowed is not None else None,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class AuthorizationError(PrintEaseError):
    """Raised when the acting role may not perform the operation."""

    status_code = 403
    error = "Forbidden"


class StorageError(PrintEaseError):
    """Raised when the persistence collaborator fails."""

    status_code = 503
    error = "Storage Unavailable"
