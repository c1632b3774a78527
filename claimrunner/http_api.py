"""Async JSON client for the remote claim API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import ApiError, MalformedPayloadError
from .models import ProxyDescriptor

LOGGER = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"
)


class HttpClaimApi:
    """Remote API client bound to one worker's proxy.

    Endpoints (relative to ``base_url``):
    - ``POST init_path`` ``{"address"}`` → ``{"message"}`` or ``{"nonce"}``
    - ``POST auth_path`` ``{"address", "message", "signature", "captchaToken"}`` → ``{"token"}``
    - ``GET inventory_path`` (bearer token) → inventory payload
    - ``POST claim_path`` ``{"boxId"}`` (bearer token) → ``{"success"}``
    """

    def __init__(
        self,
        base_url: str,
        *,
        proxy: Optional[ProxyDescriptor] = None,
        timeout: float = 30.0,
        init_path: str = "/auth/init",
        auth_path: str = "/auth/authenticate",
        inventory_path: str = "/boxes",
        claim_path: str = "/boxes/claim",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.init_path = init_path
        self.auth_path = auth_path
        self.inventory_path = inventory_path
        self.claim_path = claim_path
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            proxy=proxy.url if proxy else None,
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        response = await self._client.request(method, path, json=json, headers=headers)
        LOGGER.debug("%s %s -> %s", method, path, response.status_code)
        if response.is_error:
            raise ApiError(response.text[:200], status_code=response.status_code, url=str(response.url))
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"{path} returned non-JSON body") from exc

    async def init_auth(self, address: str) -> str:
        data = await self._request("POST", self.init_path, json={"address": address})
        message = data.get("message") or data.get("nonce") if isinstance(data, dict) else None
        if not message:
            raise MalformedPayloadError(f"init response has no message/nonce: {str(data)[:200]}")
        return str(message)

    async def authenticate(
        self,
        address: str,
        message: str,
        signature: str,
        captcha_token: str,
    ) -> str:
        payload = {
            "address": address,
            "message": message,
            "signature": signature,
            "captchaToken": captcha_token,
        }
        data = await self._request("POST", self.auth_path, json=payload)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise MalformedPayloadError(f"auth response has no token: {str(data)[:200]}")
        return str(token)

    async def fetch_inventory(self, token: str) -> Any:
        return await self._request("GET", self.inventory_path, token=token)

    async def claim(self, token: str, box_id: str) -> bool:
        data = await self._request("POST", self.claim_path, token=token, json={"boxId": box_id})
        if isinstance(data, dict):
            return bool(data.get("success", data.get("ok", False)))
        return bool(data)

    async def aclose(self) -> None:
        await self._client.aclose()
