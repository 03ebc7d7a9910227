"""Error kinds raised by dispatch operations.

Local checks (ValidationError, TransitionError, PermissionDeniedError) are
raised before anything reaches the network. Remote failures are converted
by the delivery-service client into RateLimitError, NotFoundError,
RemoteServiceError or NetworkError.
"""

import math

from delivery_dispatch.utils.templates import NotificationTemplates


class DispatchError(Exception):
    """Base class for every dispatch failure handed to a caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    """Request is incomplete or contradictory (no agent, no orders, same agent)."""


class TransitionError(DispatchError):
    """Requested delivery status is not a legal next state."""

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            f"Order {order_id} cannot move from {current} to {target}"
        )
        self.order_id = order_id
        self.current = current
        self.target = target


class PermissionDeniedError(DispatchError):
    """Acting user's role may not issue this command."""


class RateLimitError(DispatchError):
    """Backend is throttling requests."""

    def __init__(self, retry_after_seconds: float | None = None):
        self.retry_after_seconds = retry_after_seconds
        if retry_after_seconds is None:
            message = "Too many requests, please wait before refreshing"
        else:
            message = NotificationTemplates.RATE_LIMITED_MESSAGE.format(
                seconds=math.ceil(retry_after_seconds)
            )
        super().__init__(message)


class NotFoundError(DispatchError):
    """Backend has no record for the requested order or assignment."""


class RemoteServiceError(DispatchError):
    """Backend answered with a failure status or a `success: false` envelope."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(DispatchError):
    """Backend could not be reached."""
