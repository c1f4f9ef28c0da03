import asyncio
import json

import httpx
import pytest
from pydantic import ValidationError

from grabber.core.errors import ErrorKind, GrabberError, classify_error
from grabber.core.schemas import AnalysisResult


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.com")
    return httpx.HTTPStatusError("failed", request=request, response=httpx.Response(code, request=request))


def _validation_error() -> ValidationError:
    with pytest.raises(ValidationError) as excinfo:
        AnalysisResult.model_validate({"category": "nonsense"})
    return excinfo.value


@pytest.mark.parametrize("exc,kind", [
    (_status_error(429), ErrorKind.RATE_LIMITED),
    (_status_error(503), ErrorKind.NETWORK),
    (_status_error(404), ErrorKind.UNKNOWN),
    (asyncio.TimeoutError(), ErrorKind.NETWORK),
    (httpx.ConnectError("refused"), ErrorKind.NETWORK),
    (ConnectionResetError("reset"), ErrorKind.NETWORK),
    (json.JSONDecodeError("bad", "{", 0), ErrorKind.PARSE),
    (RuntimeError("Too Many Requests"), ErrorKind.RATE_LIMITED),
    (RuntimeError("boom"), ErrorKind.UNKNOWN),
])
def test_classify_error(exc, kind):
    assert classify_error(exc).kind is kind


def test_validation_errors_are_parse_errors():
    assert classify_error(_validation_error()).kind is ErrorKind.PARSE


def test_grabber_errors_pass_through():
    error = GrabberError("expired", ErrorKind.CREDENTIALS_EXPIRED)
    assert classify_error(error) is error
    assert error.retryable is False


def test_retryable_defaults_follow_kind():
    assert GrabberError("slow down", ErrorKind.RATE_LIMITED).retryable is True
    assert GrabberError("x", ErrorKind.NOTIFIER, retryable=True).retryable is True
    assert GrabberError("x").message == "x"
