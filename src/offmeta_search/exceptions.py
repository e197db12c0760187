"""
Error taxonomy for the translation pipeline.

Transport clients raise these types so the search handler can tell a
rate limit from a timeout from everything else without reading message
text. Message markers are still honoured for exceptions raised by code
we do not own.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """How the search handler reacts to a failed translation"""
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    GENERIC = "generic"


# Substrings the translation backend uses in rate-limit error messages
RATE_LIMIT_MARKERS = ("429", "rate", "Rate limit", "Please wait")


class TranslationError(Exception):
    """Translation service failed to produce a query"""

    kind = ErrorKind.GENERIC

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TranslationError):
    """Translation was refused because too many searches were made"""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str = "Rate limit exceeded", status_code: Optional[int] = 429,
                 retry_after: Optional[float] = None):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class SearchTimeoutError(TranslationError):
    """Translation did not finish before the deadline"""

    kind = ErrorKind.TIMEOUT


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map any exception raised by a translation call to an ErrorKind.

    Structured information wins: our own error types carry their kind,
    builtin timeouts are timeouts and an HTTP 429 status is a rate limit.
    Only exceptions without any of that fall back to message markers.
    """
    if isinstance(error, TranslationError):
        if error.kind is ErrorKind.GENERIC and error.status_code == 429:
            return ErrorKind.RATE_LIMITED
        return error.kind

    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT

    status_code = getattr(error, "status_code", None)
    if status_code is None:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None)
    if status_code == 429:
        return ErrorKind.RATE_LIMITED

    message = str(error)
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED

    return ErrorKind.GENERIC
