"""In-memory collaborators for pipeline, worker and coordinator tests.

Behaviour is keyed off markers in the task secret so that spawned worker
processes reproduce the same scenario without shared state:

- ``authfail``   every authentication attempt fails with HTTP 503
- ``authreject`` every authentication attempt is rejected with HTTP 400
- ``claimfail``  the second claim (in week order) is always rejected
- ``empty``      every box is already opened
- ``ineligible`` inventory reports the identity as not eligible
- ``broken``     inventory payload has no box list
- ``slowinv``    every inventory fetch hangs for a second
- ``slowclaim``  the claim of box b3 hangs for a second
- ``crash``      the signer raises while deriving the address
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from claimrunner.collaborators import Collaborators
from claimrunner.config import RunConfig
from claimrunner.errors import ApiError
from claimrunner.models import ProxyDescriptor


def default_boxes() -> List[Dict[str, Any]]:
    return [
        {"id": "b1", "week": 3, "assetType": "USDC", "amount": 5, "opened": False},
        {"id": "b2", "week": 1, "assetType": "ETH", "amounts": [0.1, 0.2], "opened": False},
        {"id": "b3", "week": 2, "assetType": "USDC", "amount": 2.5, "opened": False},
    ]


class FakeSigner:
    def address(self, secret: str) -> str:
        if "crash" in secret:
            raise ValueError("cannot derive address")
        return f"0x{secret}"

    def sign_message(self, secret: str, message: str) -> str:
        return f"sig:{secret}:{message}"


class FakeCaptcha:
    def __init__(self, delay: float = 0) -> None:
        self.delay = delay
        self.solved = 0

    async def solve(self) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.solved += 1
        return f"captcha-{self.solved}"


class FakeApi:
    def __init__(self) -> None:
        self.auth_calls = 0
        self.inventory_calls = 0
        self.claims: List[str] = []
        self.closed = False
        self._boxes: Dict[str, List[Dict[str, Any]]] = {}

    def _boxes_for(self, address: str) -> List[Dict[str, Any]]:
        if address not in self._boxes:
            boxes = default_boxes()
            if "empty" in address:
                for box in boxes:
                    box["opened"] = True
            self._boxes[address] = boxes
        return self._boxes[address]

    async def init_auth(self, address: str) -> str:
        return f"login:{address}"

    async def authenticate(self, address: str, message: str, signature: str, captcha_token: str) -> str:
        self.auth_calls += 1
        if "authfail" in address:
            raise ApiError("upstream unavailable", status_code=503)
        if "authreject" in address:
            raise ApiError("invalid captcha token", status_code=400)
        assert message == f"login:{address}"
        assert captcha_token
        return f"token:{address}"

    async def fetch_inventory(self, token: str) -> Any:
        self.inventory_calls += 1
        address = token.split(":", 1)[1]
        if "slowinv" in address:
            await asyncio.sleep(1)
        if "ineligible" in address:
            return {"eligible": False}
        if "broken" in address:
            return {"unexpected": True}
        return {"data": {"boxes": [dict(box) for box in self._boxes_for(address)]}}

    async def claim(self, token: str, box_id: str) -> bool:
        address = token.split(":", 1)[1]
        self.claims.append(box_id)
        if "slowclaim" in address and box_id == "b3":
            await asyncio.sleep(1)
        if "claimfail" in address and box_id == "b3":
            return False
        for box in self._boxes_for(address):
            if box["id"] == box_id:
                box["opened"] = True
        return True

    async def aclose(self) -> None:
        self.closed = True


def make_collaborators(captcha: bool = True, captcha_delay: float = 0) -> Collaborators:
    return Collaborators(
        signer=FakeSigner(),
        api=FakeApi(),
        captcha=FakeCaptcha(captcha_delay) if captcha else None,
    )


def build_fake_collaborators(config: RunConfig, proxy: Optional[ProxyDescriptor]) -> Collaborators:
    return make_collaborators()


def build_broken_collaborators(config: RunConfig, proxy: Optional[ProxyDescriptor]) -> Collaborators:
    raise RuntimeError("collaborators unavailable in this worker")
