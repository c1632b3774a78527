import asyncio

import httpx
import pytest

from claimrunner.captcha import AntiCaptchaSolver
from claimrunner.errors import CaptchaError


def _solver(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = dict(api_url="https://captcha.test", poll_interval=0, max_wait=5, client=client)
    options.update(kwargs)
    return AntiCaptchaSolver("key", "site", "https://page.test", **options)


def test_polls_until_ready():
    polls = []

    def handler(request):
        if request.url.path == "/createTask":
            return httpx.Response(200, json={"errorId": 0, "taskId": 42})
        polls.append(1)
        if len(polls) < 3:
            return httpx.Response(200, json={"errorId": 0, "status": "processing"})
        return httpx.Response(200, json={"errorId": 0, "status": "ready", "solution": {"token": "tok"}})

    assert asyncio.run(_solver(handler).solve()) == "tok"
    assert len(polls) == 3


def test_service_error_raises():
    def handler(request):
        return httpx.Response(200, json={"errorId": 1, "errorCode": "ERROR_KEY_DOES_NOT_EXIST"})

    with pytest.raises(CaptchaError, match="ERROR_KEY_DOES_NOT_EXIST"):
        asyncio.run(_solver(handler).solve())


def test_timeout_raises():
    def handler(request):
        if request.url.path == "/createTask":
            return httpx.Response(200, json={"errorId": 0, "taskId": 1})
        return httpx.Response(200, json={"errorId": 0, "status": "processing"})

    with pytest.raises(CaptchaError, match="Timed out"):
        asyncio.run(_solver(handler, max_wait=0.05, poll_interval=0.01).solve())


def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CaptchaError):
        asyncio.run(_solver(handler).solve())


def test_non_object_body_raises_captcha_error():
    def handler(request):
        return httpx.Response(200, json=["unexpected"])

    with pytest.raises(CaptchaError, match="unexpected body"):
        asyncio.run(_solver(handler).solve())
