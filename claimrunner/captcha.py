"""Anti-Captcha integration (async)."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from .errors import CaptchaError

API_URL = "https://api.anti-captcha.com"
POLL_INTERVAL = 5
MAX_WAIT = 120

LOGGER = logging.getLogger(__name__)


class AntiCaptchaSolver:
    """Anti-Captcha API client producing single-use tokens."""

    def __init__(
        self,
        api_key: str,
        site_key: str,
        page_url: str,
        *,
        task_type: str = "TurnstileTaskProxyless",
        api_url: str = API_URL,
        max_wait: float = MAX_WAIT,
        poll_interval: float = POLL_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize captcha solver.

        Parameters
        ----------
        api_key : str
            Anti-Captcha client key
        site_key : str
            Site key of the challenge widget
        page_url : str
            URL of the page hosting the challenge
        task_type : str
            Anti-Captcha task type
        max_wait : float
            Maximum time to wait for a solution (seconds)
        poll_interval : float
            Time between polling attempts (seconds)
        """
        self.api_key = api_key
        self.site_key = site_key
        self.page_url = page_url
        self.task_type = task_type
        self.api_url = api_url.rstrip("/")
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self._client = client

    async def _post(self, client: httpx.AsyncClient, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await client.post(f"{self.api_url}/{method}", json=payload)
        if resp.is_error:
            raise CaptchaError(f"AntiCaptcha {method} HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise CaptchaError(f"AntiCaptcha {method} returned non-JSON body") from exc
        if not isinstance(body, dict):
            raise CaptchaError(f"AntiCaptcha {method} returned unexpected body: {str(body)[:200]}")
        if body.get("errorId"):
            raise CaptchaError(
                f"AntiCaptcha {method} failed: {body.get('errorCode')} {body.get('errorDescription', '')}".strip()
            )
        return body

    async def solve(self) -> str:
        """Create a task and poll until a token is ready.

        Raises
        ------
        CaptchaError
            On service errors, empty solutions or when ``max_wait`` elapses
        """
        client = self._client or httpx.AsyncClient(timeout=30)
        start_time = time.monotonic()
        try:
            created = await self._post(
                client,
                "createTask",
                {
                    "clientKey": self.api_key,
                    "task": {
                        "type": self.task_type,
                        "websiteURL": self.page_url,
                        "websiteKey": self.site_key,
                    },
                },
            )
            task_id = created.get("taskId")
            if task_id is None:
                raise CaptchaError("AntiCaptcha createTask returned no taskId")
            LOGGER.debug("Created captcha task %s", task_id)

            deadline = start_time + self.max_wait
            while time.monotonic() < deadline:
                await asyncio.sleep(self.poll_interval)
                body = await self._post(
                    client,
                    "getTaskResult",
                    {"clientKey": self.api_key, "taskId": task_id},
                )
                if body.get("status") == "processing":
                    continue

                solution = body.get("solution") or {}
                token = solution.get("token") or solution.get("gRecaptchaResponse")
                if not token:
                    raise CaptchaError(f"AntiCaptcha returned empty solution for task {task_id}")

                LOGGER.info(
                    "Solved captcha task %s in %.2fs",
                    task_id,
                    time.monotonic() - start_time,
                )
                return token

            raise CaptchaError(f"Timed out waiting for captcha solution after {self.max_wait}s")
        except httpx.HTTPError as exc:
            raise CaptchaError(f"AntiCaptcha request failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()
