"""Exceptions raised by the payment tracker collaborators."""


class TrackerError(Exception):
    """Base exception for payment tracking."""
    pass


class PaymentQueryError(TrackerError):
    """Raised when the payments API cannot be reached or returns an error."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ChannelError(TrackerError):
    """Raised when the realtime channel fails to connect."""
    pass
