"""Errors raised by the channel client."""

from typing import Optional


class ChannelError(Exception):
    """Base exception for channel API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ChannelAuthError(ChannelError):
    """Raised when the channel rejects the credentials (401, 403)."""
    pass


class ChannelPermissionError(ChannelError):
    """Raised when the credentials lack a required scope (303 from the channel)."""
    pass


class ChannelTransientError(ChannelError):
    """Raised when timeouts, 5xx or 429 responses persist after all retries."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message, status_code, response_body)
        self.attempts = attempts
