import asyncio
from typing import Union

from .types import RequestDescriptor, Response


class LayercakeError(Exception):
    """Base class for errors raised by layercake."""


class ConfigurationError(LayercakeError, ValueError):
    """Raised eagerly for malformed policy configuration."""


class RequestError(LayercakeError):
    """A network-level failure (no status) or a response with status >= 400."""

    def __init__(
        self,
        message: str,
        request: RequestDescriptor,
        status: Union[int, None] = None,
        response: Union[Response, None] = None,
    ):
        super().__init__(message)
        self.status = status
        self.request = request
        self.response = response


class AbortError(LayercakeError):
    """Cancellation-class failure. Never retried, never wrapped."""

    def __init__(self, message: str = "The operation was aborted", reason=None):
        super().__init__(message)
        self.reason = reason


class RequestTimeoutError(AbortError):
    pass


class DeadlineExceededError(AbortError):
    pass


def is_abort_error(error: BaseException) -> bool:
    return isinstance(error, (AbortError, asyncio.CancelledError))
