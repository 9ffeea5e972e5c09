"""Exception hierarchy for refine cloud API errors.

Every failure that crosses the client boundary is a RefineCloudError carrying
the server's message, the numeric HTTP status and the status text. Failures
without a response (connection errors, timeouts) use status 0 and empty text.
"""

from typing import Optional

import httpx


class RefineCloudError(Exception):
    """Base exception for refine cloud API errors.

    Attributes:
        message: Human-readable error description from the server (may be empty)
        status: HTTP status code, 0 when no response was received
        status_text: HTTP reason phrase, empty when no response was received
    """

    def __init__(self, message: str = '', status: int = 0, status_text: str = ''):
        self.message = message
        self.status = status
        self.status_text = status_text
        super().__init__(message)

    def __str__(self) -> str:
        if self.status:
            return f'[{self.status} {self.status_text}] {self.message}'.rstrip()
        if self.message:
            return self.message
        if self.__cause__ is not None:
            return f'Request failed: {self.__cause__}'
        return 'Request failed'

    def __repr__(self) -> str:
        return f'{type(self).__name__}(message={self.message!r}, status={self.status}, status_text={self.status_text!r})'

    def to_dict(self) -> dict:
        """Return the error as a plain ``{message, status, statusText}`` mapping."""
        return {'message': self.message, 'status': self.status, 'statusText': self.status_text}


class AuthenticationError(RefineCloudError):
    """Request rejected for a missing or invalid access token (HTTP 401)."""

    pass


class RefreshError(RefineCloudError):
    """The refresh-token exchange itself failed; a full login is required."""

    pass


class RefreshTimeoutError(RefreshError):
    """The refresh-token exchange did not complete in time."""

    pass


class TransportError(RefineCloudError):
    """The request failed without producing an HTTP response."""

    pass


class RequestTimeoutError(TransportError):
    """The request timed out before a response arrived."""

    pass


def _extract_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ''
    if isinstance(body, dict):
        message = body.get('message')
        if message is not None:
            return str(message)
    return ''


def map_error_response(response: httpx.Response) -> RefineCloudError:
    """Map an HTTP error response to a typed exception.

    Args:
        response: Response with an error status (>= 400)

    Returns:
        AuthenticationError for 401, RefineCloudError otherwise

    Example:
        >>> response = httpx.Response(503, json={'message': 'overloaded'})
        >>> exc = map_error_response(response)
        >>> (exc.status, exc.status_text, exc.message)
        (503, 'Service Unavailable', 'overloaded')
    """
    error_class = AuthenticationError if response.status_code == 401 else RefineCloudError
    return error_class(_extract_message(response), response.status_code, response.reason_phrase)


def from_transport_error(exc: Exception) -> TransportError:
    """Wrap an httpx failure that produced no response.

    The original exception is attached as ``__cause__``.
    """
    error = RequestTimeoutError() if isinstance(exc, httpx.TimeoutException) else TransportError()
    error.__cause__ = exc
    return error


def as_refresh_error(error: RefineCloudError, message: Optional[str] = None) -> RefreshError:
    """Re-type an exchange failure as a RefreshError, keeping its fields."""
    if isinstance(error, RefreshError):
        return error
    error_class = RefreshTimeoutError if isinstance(error, RequestTimeoutError) else RefreshError
    refresh_error = error_class(error.message if message is None else message, error.status, error.status_text)
    refresh_error.__cause__ = error
    return refresh_error
