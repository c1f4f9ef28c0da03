"""
Error taxonomy shared by every stage of the bookmark pipeline.
"""
import asyncio
import json
from enum import Enum

import httpx
from pydantic import ValidationError


class ErrorKind(str, Enum):
    CREDENTIALS_EXPIRED = "CREDENTIALS_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK = "NETWORK"
    DESTINATION_WRITE_FAILED = "DESTINATION_WRITE_FAILED"
    PARSE = "PARSE"
    NOTIFIER = "NOTIFIER"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.NETWORK})


class GrabberError(Exception):
    """
    Classified pipeline error.
    `retryable` tells the operator whether the next poll pass is expected to fix it.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, retryable: bool | None = None):
        super().__init__(message)
        self.kind = kind
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable

    @property
    def message(self) -> str:
        return str(self)

    def __repr__(self) -> str:
        return f"GrabberError(kind={self.kind.value}, retryable={self.retryable}, message={self.message!r})"


def _looks_rate_limited(text: str) -> bool:
    text = text.lower()
    return "rate limit" in text or "429" in text or "too many requests" in text


def classify_error(exc: BaseException) -> GrabberError:
    """
    Map any exception raised below the pipeline onto the error taxonomy.
    """
    if isinstance(exc, GrabberError):
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 429:
            return GrabberError(message, ErrorKind.RATE_LIMITED)
        if exc.response.status_code >= 500:
            return GrabberError(message, ErrorKind.NETWORK)
        return GrabberError(message, ErrorKind.UNKNOWN)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TransportError, ConnectionError)):
        return GrabberError(f"{exc.__class__.__name__}: {message}", ErrorKind.NETWORK)

    if isinstance(exc, (ValidationError, json.JSONDecodeError)):
        return GrabberError(message, ErrorKind.PARSE)

    if _looks_rate_limited(message):
        return GrabberError(message, ErrorKind.RATE_LIMITED)

    return GrabberError(message, ErrorKind.UNKNOWN)
