"""Interfaces to the external services a task pipeline talks to.

Worker processes build their collaborators from ``RunConfig.collaborators``,
an import string ``"module:callable"`` invoked as
``factory(config, proxy) -> Collaborators``.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .captcha import AntiCaptchaSolver
from .config import RunConfig
from .errors import ConfigurationError
from .http_api import HttpClaimApi
from .models import ProxyDescriptor


class WalletSigner(Protocol):
    """Local signing primitive. Never sees the network."""

    def address(self, secret: str) -> str:
        ...

    def sign_message(self, secret: str, message: str) -> str:
        ...


class CaptchaSolver(Protocol):
    async def solve(self) -> str:
        """Return a fresh single-use token, or raise ``CaptchaError``."""
        ...


class ClaimApi(Protocol):
    """Remote API issuing auth tokens and inventory/claim data."""

    async def init_auth(self, address: str) -> str:
        """Start the handshake and return the message to sign."""
        ...

    async def authenticate(
        self,
        address: str,
        message: str,
        signature: str,
        captcha_token: str,
    ) -> str:
        """Exchange the signed challenge for an auth token."""
        ...

    async def fetch_inventory(self, token: str) -> Any:
        """Return the raw decoded inventory payload."""
        ...

    async def claim(self, token: str, box_id: str) -> bool:
        ...

    async def aclose(self) -> None:
        ...


@dataclass
class Collaborators:
    signer: WalletSigner
    api: ClaimApi
    captcha: Optional[CaptchaSolver] = None


CollaboratorFactory = Callable[[RunConfig, Optional[ProxyDescriptor]], Collaborators]


def load_object(spec: str) -> Any:
    """Resolve a ``"package.module:attribute"`` import string."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"expected 'module:attribute', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import {module_name!r}: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"{module_name!r} has no attribute {attr!r}") from exc


DEFAULT_FACTORY = "claimrunner.collaborators:build_default"


def preflight(config: RunConfig) -> None:
    """Resolve the configured plugins in the coordinator before any worker starts."""
    factory = load_object(config.collaborators)
    if not callable(factory):
        raise ConfigurationError(f"{config.collaborators!r} is not callable")
    if config.collaborators != DEFAULT_FACTORY:
        return
    if not config.signer:
        raise ConfigurationError("no wallet signer configured (CLAIMRUNNER_SIGNER)")
    if not config.api_base_url:
        raise ConfigurationError("no API base URL configured (CLAIMRUNNER_API_BASE_URL)")
    load_object(config.signer)


def build_collaborators(config: RunConfig, proxy: Optional[ProxyDescriptor]) -> Collaborators:
    factory: CollaboratorFactory = load_object(config.collaborators)
    return factory(config, proxy)


def build_default(config: RunConfig, proxy: Optional[ProxyDescriptor]) -> Collaborators:
    """HTTP API client, optional Anti-Captcha solver and the configured signer."""
    if not config.signer:
        raise ConfigurationError("no wallet signer configured (CLAIMRUNNER_SIGNER)")
    if not config.api_base_url:
        raise ConfigurationError("no API base URL configured (CLAIMRUNNER_API_BASE_URL)")

    signer_factory = load_object(config.signer)
    signer: WalletSigner = signer_factory()

    captcha: Optional[CaptchaSolver] = None
    if config.captcha_configured:
        captcha = AntiCaptchaSolver(
            api_key=config.captcha_api_key,
            site_key=config.captcha_site_key,
            page_url=config.captcha_page_url or config.api_base_url,
            task_type=config.captcha_task_type,
            api_url=config.captcha_api_url,
        )

    api = HttpClaimApi(
        config.api_base_url,
        proxy=proxy,
        timeout=config.request_timeout,
    )
    return Collaborators(signer=signer, api=api, captcha=captcha)
