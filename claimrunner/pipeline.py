"""Per-task state machine: authenticate, fetch inventory, claim, verify, classify.

Every task leaves ``TaskPipeline.process`` with exactly one ``TaskResult``
appended to the worker's sink, whatever happened along the way.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Iterable, List, Optional, TypeVar

from .collaborators import Collaborators
from .config import RunConfig
from .errors import (
    CaptchaUnavailableError,
    ClaimRunnerError,
    ConfigurationError,
    NotEligibleError,
    is_retryable,
)
from .inventory import parse_inventory, summarize, unopened_in_claim_order
from .logging_utils import task_context
from .models import (
    InventoryItem,
    InventorySummary,
    ResultCode,
    Task,
    TaskResult,
    TaskStatus,
)
from .retry import RetryExecutor, RetryOutcome
from .sink import ResultSink

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ClaimRecord:
    box_id: str
    ok: bool
    error: Optional[str] = None


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _auth_retryable(exc: BaseException) -> bool:
    """Any failed handshake step is retried from the top, except missing configuration."""
    if isinstance(exc, ConfigurationError):
        return False
    return isinstance(exc, ClaimRunnerError) or is_retryable(exc)


class TaskPipeline:
    """Drive one task at a time through the claim flow.

    One pipeline instance is shared by all tasks of a worker; per-task state
    lives in local variables so concurrent ``process`` calls do not interfere.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        config: RunConfig,
        sink: ResultSink,
        *,
        worker_index: int = 0,
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        self.signer = collaborators.signer
        self.captcha = collaborators.captcha
        self.api = collaborators.api
        self.config = config
        self.sink = sink
        self.worker_index = worker_index
        self.retry = retry or RetryExecutor(config.max_attempts, config.retry_delay)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Bound a remote call by the request timeout."""
        return await asyncio.wait_for(awaitable, timeout=self.config.request_timeout)

    async def process(self, task: Task) -> TaskResult:
        """Run the full flow for ``task`` and persist its result."""
        task.status = TaskStatus.IN_PROGRESS
        try:
            result = await self._run(task)
        except Exception as exc:
            with task_context(task.label):
                LOGGER.error("Task aborted: %s", exc, exc_info=True)
            result = self._result(task, ResultCode.ERROR, error=_describe(exc))
        task.status = TaskStatus.DONE

        with task_context(task.label):
            await self.sink.append(result)
            LOGGER.info(
                "Task finished: status=%s items=%d opened=%d",
                result.status.value,
                result.summary.total_items,
                result.summary.opened_count,
            )
        return result

    async def _run(self, task: Task) -> TaskResult:
        secret = task.secret.get_secret_value()

        # 1. Authenticate
        with task_context(task.label):
            try:
                auth = await self.retry.run(
                    lambda: self._authenticate(task, secret),
                    name="authenticate",
                    is_success=bool,
                    retry_on=_auth_retryable,
                )
            except ClaimRunnerError as exc:
                LOGGER.error("Authentication failed fast: %s", exc)
                return self._result(task, ResultCode.FAILED_TOKEN, error=str(exc))
            if not auth.ok:
                return self._result(
                    task,
                    ResultCode.FAILED_TOKEN,
                    error=f"authentication failed after {auth.attempts} attempt(s): {auth.error}",
                )
        return await self._run_authenticated(task, auth.value)

    async def _run_authenticated(self, task: Task, token: str) -> TaskResult:
        with task_context(task.label):
            # 2. Fetch inventory
            try:
                inventory = await self._fetch_inventory(token)
            except NotEligibleError:
                LOGGER.info("Not eligible")
                return self._result(task, ResultCode.NOT_ELIGIBLE)
            if not inventory.ok:
                return self._result(
                    task,
                    ResultCode.FAILED,
                    error=f"inventory fetch failed after {inventory.attempts} attempt(s): {inventory.error}",
                )
            items: List[InventoryItem] = inventory.value
            summary = summarize(items)
            unopened = unopened_in_claim_order(items)

            # 3. Claim loop
            if not unopened:
                LOGGER.info("No unopened boxes (%d total)", summary.total_items)
                return self._result(task, ResultCode.NO_UNOPENED_BOXES, summary=summary)

            LOGGER.info("Claiming %d unopened box(es)", len(unopened))
            claims = await self._claim_all(token, unopened)
            failed = [c for c in claims if not c.ok]
            errors = [f"claim {c.box_id} failed: {c.error}" for c in failed]

            # 4. Verify
            try:
                verify = await self._fetch_inventory(token)
            except NotEligibleError as exc:
                verify = RetryOutcome(ok=False, attempts=1, error=str(exc))

            if verify.ok:
                final = summarize(verify.value)
                if final.unopened_count == 0 or not failed:
                    status = ResultCode.SUCCESS
                else:
                    status = ResultCode.PARTIAL
                if final.unopened_count and not failed:
                    LOGGER.warning(
                        "%d box(es) still unopened with no failed claims",
                        final.unopened_count,
                    )
            else:
                claimed = {c.box_id for c in claims if c.ok}
                final = summarize(_mark_opened(items, claimed))
                status = ResultCode.PARTIAL if failed else ResultCode.SUCCESS
                errors.append(f"verify failed: {verify.error}")

            # 5. Classify
            return self._result(
                task,
                status,
                summary=final,
                claims_attempted=len(claims),
                claims_failed=len(failed),
                error="; ".join(errors) or None,
            )

    async def _authenticate(self, task: Task, secret: str) -> str:
        """One full handshake. Every attempt needs a fresh CAPTCHA token.

        The solver enforces its own deadline, so ``solve`` is not bounded by
        the request timeout.
        """
        task.address = self.signer.address(secret)
        if self.captcha is None:
            raise CaptchaUnavailableError()
        captcha_token = await self.captcha.solve()
        message = await self._call(self.api.init_auth(task.address))
        signature = self.signer.sign_message(secret, message)
        return await self._call(
            self.api.authenticate(task.address, message, signature, captcha_token)
        )

    async def _fetch_inventory(self, token: str) -> RetryOutcome[List[InventoryItem]]:
        async def fetch() -> List[InventoryItem]:
            payload = await self._call(self.api.fetch_inventory(token))
            return parse_inventory(payload)

        return await self.retry.run(fetch, name="inventory")

    async def _claim_all(self, token: str, unopened: List[InventoryItem]) -> List[ClaimRecord]:
        """Claim boxes in week order; a failed box never stops the loop."""
        records: List[ClaimRecord] = []
        for position, item in enumerate(unopened):
            if position:
                await asyncio.sleep(self.config.claim_delay)
            box_id = item.box_id
            try:
                outcome = await self.retry.run(
                    lambda: self._call(self.api.claim(token, box_id)),
                    name=f"claim {box_id}",
                    is_success=bool,
                )
            except ClaimRunnerError as exc:
                LOGGER.warning("Claim %s rejected: %s", box_id, exc)
                records.append(ClaimRecord(box_id, False, str(exc)))
                continue
            if outcome.ok:
                LOGGER.info("Claimed box %s (week %d)", box_id, item.week)
            records.append(ClaimRecord(box_id, outcome.ok, outcome.error))
        return records

    def _result(
        self,
        task: Task,
        status: ResultCode,
        *,
        summary: Optional[InventorySummary] = None,
        claims_attempted: int = 0,
        claims_failed: int = 0,
        error: Optional[str] = None,
    ) -> TaskResult:
        summary = summary or InventorySummary()
        fully_processed = (
            status in (ResultCode.SUCCESS, ResultCode.NO_UNOPENED_BOXES)
            and summary.unopened_count == 0
        )
        return TaskResult(
            task_index=task.index,
            task_id=task.label,
            worker_index=self.worker_index,
            status=status,
            fully_processed=fully_processed,
            summary=summary,
            claims_attempted=claims_attempted,
            claims_failed=claims_failed,
            error=error,
        )


def _mark_opened(items: Iterable[InventoryItem], claimed: set) -> List[InventoryItem]:
    return [
        item.model_copy(update={"opened": True}) if item.box_id in claimed else item
        for item in items
    ]
