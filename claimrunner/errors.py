"""Exception hierarchy for the claim pipeline.

Separates:
- transient errors (retried by ``RetryExecutor``)
- terminal business outcomes (``NotEligibleError``)
- configuration and input errors (never retried)
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class ClaimRunnerError(Exception):
    """Base class for all claimrunner errors."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


class ConfigurationError(ClaimRunnerError):
    """Run configuration is missing or invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class CaptchaUnavailableError(ConfigurationError):
    """CAPTCHA credentials or site key are not configured."""

    def __init__(self, message: str = "CAPTCHA solver is not configured") -> None:
        super().__init__(message)


class InputError(ClaimRunnerError):
    """Task or proxy list could not be read."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class ApiError(ClaimRunnerError):
    """Remote API answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, url: Optional[str] = None) -> None:
        self.status_code = status_code
        self.url = url
        # 5xx and 429 are transient, other 4xx are not
        super().__init__(message, retryable=status_code >= 500 or status_code == 429)

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {super().__str__()}"


class MalformedPayloadError(ClaimRunnerError):
    """Response body did not have the expected shape."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


class NotEligibleError(ClaimRunnerError):
    """Remote API explicitly reported the identity as not eligible."""

    def __init__(self, message: str = "not eligible") -> None:
        super().__init__(message, retryable=False)


class CaptchaError(ClaimRunnerError):
    """CAPTCHA service failed or did not produce a token in time."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


def is_retryable(exc: BaseException) -> bool:
    """Check whether an exception should trigger another attempt."""
    if isinstance(exc, ClaimRunnerError):
        return exc.retryable
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, OSError)):
        return True
    return False
