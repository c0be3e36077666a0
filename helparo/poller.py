"""
Client loop that polls a request's status until a helper accepts it.

Polls go out on a fixed timer, one per tick, and a tick is skipped while the
previous poll is still in flight. The loop stops when the request leaves
``open``, when its broadcast expires, when the request is gone (404), or when
the overall timeout passes. Server errors and transport failures are retried on
the next tick.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from enum import StrEnum

import httpx
from pydantic import BaseModel, ValidationError

from helparo.config import settings
from helparo.models import BroadcastStatus, RequestStatus, RequestStatusView

logger = logging.getLogger(__name__)


class PollOutcome(StrEnum):
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"  # The request itself was cancelled
    EXPIRED = "expired"  # Broadcast ended without a helper
    NOT_FOUND = "not_found"
    TIMED_OUT = "timed_out"


class TransientPollError(Exception):
    """A poll failed in a way worth retrying."""


class PollTransportTimeout(TransientPollError):
    """A single status request exceeded ``request_timeout``."""


class PollResult(BaseModel):
    outcome: PollOutcome
    last_status: RequestStatusView | None
    polls: int
    elapsed: float
    last_error: str | None = None


def outcome_for(view: RequestStatusView) -> PollOutcome | None:
    """Terminal outcome for a polled status, or None to keep waiting."""
    if view.status == RequestStatus.ASSIGNED:
        return PollOutcome.ASSIGNED
    if view.status == RequestStatus.COMPLETED:
        return PollOutcome.COMPLETED
    if view.status == RequestStatus.CANCELLED:
        return PollOutcome.CANCELLED
    if view.broadcast_status == BroadcastStatus.EXPIRED:
        return PollOutcome.EXPIRED
    return None


class StatusPoller:
    def __init__(
        self,
        client: httpx.AsyncClient,
        interval: float | None = None,
        timeout: float | None = None,
        request_timeout: float | None = None,
        on_update: Callable[[RequestStatusView], None] | None = None,
        on_timeout: Callable[[str], None] | None = None,
    ) -> None:
        self._client = client
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.timeout = timeout if timeout is not None else settings.poll_timeout_seconds
        self.request_timeout = (
            request_timeout
            if request_timeout is not None
            else settings.request_timeout_seconds
        )
        self.on_update = on_update
        self.on_timeout = on_timeout
        self._task: asyncio.Task[PollResult] | None = None

    @property
    def max_polls(self) -> int:
        # Rounded first so 0.6 / 0.01 doesn't turn into 61 ticks
        return max(1, math.ceil(round(self.timeout / self.interval, 6)))

    async def fetch_status(self, request_id: str) -> RequestStatusView | None:
        """
        Issue a single poll.

        Returns None when the request does not exist and raises
        ``TransientPollError`` for anything that may succeed on retry.
        """
        try:
            response = await self._client.get(
                f"/requests/{request_id}/status", timeout=self.request_timeout
            )
        except httpx.TimeoutException as e:
            raise PollTransportTimeout(
                f"Status request timed out after {self.request_timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise TransientPollError(f"Request failed: {e}") from e

        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.status_code != httpx.codes.OK:
            raise TransientPollError(f"Server responded {response.status_code}")

        try:
            return RequestStatusView.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransientPollError(f"Malformed status payload: {e}") from e

    async def wait_for_acceptance(self, request_id: str) -> PollResult:
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + self.timeout

        tick = 0
        polls = 0
        last_status: RequestStatusView | None = None
        last_error: str | None = None
        in_flight: asyncio.Task[RequestStatusView | None] | None = None

        def result(outcome: PollOutcome) -> PollResult:
            return PollResult(
                outcome=outcome,
                last_status=last_status,
                polls=polls,
                elapsed=loop.time() - start,
                last_error=last_error,
            )

        try:
            while True:
                now = loop.time()
                if now >= deadline:
                    break

                if tick < self.max_polls and now >= start + tick * self.interval:
                    if in_flight is None:
                        in_flight = asyncio.create_task(self.fetch_status(request_id))
                        polls += 1
                    else:
                        logger.debug(f"Previous poll of {request_id} still running, skipping tick")
                    # Ticks missed while the loop was busy are dropped, not replayed
                    tick = max(tick + 1, math.floor((now - start) / self.interval) + 1)
                    continue

                wait_until = deadline
                if tick < self.max_polls:
                    wait_until = min(deadline, start + tick * self.interval)
                delay = max(0.0, wait_until - loop.time())

                if in_flight is None:
                    await asyncio.sleep(delay)
                    continue

                done, _ = await asyncio.wait({in_flight}, timeout=delay)
                if not done:
                    continue

                task, in_flight = in_flight, None
                try:
                    view = task.result()
                except TransientPollError as e:
                    last_error = str(e)
                    logger.warning(f"Poll of request {request_id} failed, will retry: {e}")
                    continue

                if view is None:
                    logger.info(f"Request {request_id} no longer exists, stopping poll")
                    return result(PollOutcome.NOT_FOUND)

                last_status = view
                if self.on_update is not None:
                    self.on_update(view)

                outcome = outcome_for(view)
                if outcome is not None:
                    logger.info(f"Request {request_id} reached '{outcome}' after {polls} polls")
                    return result(outcome)
        finally:
            if in_flight is not None and not in_flight.done():
                in_flight.cancel()

        logger.warning(
            f"Timed out waiting for acceptance of request {request_id} after {polls} polls"
        )
        if self.on_timeout is not None:
            self.on_timeout(request_id)
        return result(PollOutcome.TIMED_OUT)

    def start(self, request_id: str) -> "asyncio.Task[PollResult]":
        """Run ``wait_for_acceptance`` as a task owned by this poller."""
        if self.running:
            raise RuntimeError("Poller is already running")
        self._task = asyncio.create_task(self.wait_for_acceptance(request_id))
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        """Stop polling now, e.g. when the waiting view is closed."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
