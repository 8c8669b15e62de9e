from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_MESSAGE = "INVALID_MESSAGE"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_MODEL = "INVALID_MODEL"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"


class ChatRelayError(Exception):
    """Base class for every classified failure surfaced to callers.

    ``code`` is machine-readable; ``extra`` carries context such as the
    provider name or session id.
    """

    code: ErrorCode = ErrorCode.PROVIDER_UNAVAILABLE

    def __init__(self, message: str, *, code: ErrorCode | None = None, **extra):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra


class InvalidMessageError(ChatRelayError):
    code = ErrorCode.INVALID_MESSAGE


class ProviderUnavailableError(ChatRelayError):
    code = ErrorCode.PROVIDER_UNAVAILABLE


class RateLimitedError(ChatRelayError):
    code = ErrorCode.RATE_LIMITED


class InvalidModelError(ChatRelayError):
    code = ErrorCode.INVALID_MODEL


class BackendUnavailableError(ChatRelayError):
    code = ErrorCode.BACKEND_UNAVAILABLE
