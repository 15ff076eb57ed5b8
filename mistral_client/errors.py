"""Exceptions raised by the Mistral client."""

from typing import Optional, Any


class MistralError(Exception):
    """Base exception for client errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AuthenticationError(MistralError):
    """Raised when no API key is configured."""

    pass


class TransientTransportError(MistralError):
    """Raised when a retriable failure persists after every retry."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_exception: Optional[Exception] = None,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
    ):
        super().__init__(message, status_code, body)
        self.attempts = attempts
        self.last_exception = last_exception


class NonRetriableResponseError(MistralError):
    """Raised when a streaming request ends with a non-retriable error status."""

    pass


class DecodeError(MistralError):
    """Raised when a stream frame carries a payload that is not valid JSON."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class CancellationError(MistralError):
    """Raised when the caller cancels a request or its backoff wait."""

    pass
