"""Rate-limited dispatcher for provider calls.

Requests are split into two lanes:
1. read  - price and status queries (parallel, short spacing)
2. write - number leasing and status changes (serial, long spacing)

Each lane is a pump task draining a deque. Throttled requests go back to the
head of their lane, the lane's backoff multiplier grows, and repeated or
severe throttling puts every lane into a shared cooldown.
"""

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from smsgate.core.config import get_settings
from smsgate.core.exceptions import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

ProviderCall = Callable[[str, dict[str, Any]], Awaitable[Any]]


class RequestKind(str, Enum):
    """Dispatcher lane."""

    READ = "read"
    WRITE = "write"


class RequestState(str, Enum):
    """Dispatch request lifecycle."""

    QUEUED = "queued"
    DISPATCHING = "dispatching"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


REQUEST_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.QUEUED: frozenset({RequestState.DISPATCHING, RequestState.FAILED}),
    RequestState.DISPATCHING: frozenset(
        {RequestState.SUCCEEDED, RequestState.RETRY_SCHEDULED, RequestState.FAILED}
    ),
    RequestState.RETRY_SCHEDULED: frozenset({RequestState.QUEUED, RequestState.FAILED}),
    RequestState.SUCCEEDED: frozenset(),
    RequestState.FAILED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """A dispatch request was moved along an edge the state machine forbids."""


@dataclass
class DispatchRequest:
    """One queued provider call and its retry bookkeeping."""

    action: str
    params: dict[str, Any]
    kind: RequestKind
    future: asyncio.Future
    deadline: float
    state: RequestState = RequestState.QUEUED
    attempts: int = 0
    not_before: float = 0.0
    history: list[RequestState] = field(default_factory=lambda: [RequestState.QUEUED])

    @property
    def finished(self) -> bool:
        return self.state in (RequestState.SUCCEEDED, RequestState.FAILED)

    def transition(self, new_state: RequestState) -> None:
        """Move to ``new_state``.

        Raises:
            InvalidTransitionError: If the edge is not in REQUEST_TRANSITIONS
        """
        if new_state not in REQUEST_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.action}: cannot go from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def resolve(self, result: Any) -> None:
        self.transition(RequestState.SUCCEEDED)
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        self.transition(RequestState.FAILED)
        if not self.future.done():
            self.future.set_exception(error)


class _Lane:
    """Queue, concurrency slot pool and spacing state of one request kind."""

    def __init__(self, kind: RequestKind, concurrency: int, interval: float):
        self.kind = kind
        self.concurrency = concurrency
        self.interval = interval
        self.queue: deque[DispatchRequest] = deque()
        self.semaphore = asyncio.Semaphore(concurrency)
        self.wakeup = asyncio.Event()
        self.multiplier = 1.0
        self.next_slot = 0.0
        self.pump: asyncio.Task | None = None


class RateLimitedDispatcher:
    """Schedules provider calls under per-lane spacing, backoff and cooldown.

    Only ``submit``, ``set_cooldown`` and the read-only introspection methods
    are public; lanes and their queues are owned by the dispatcher.

    Args:
        call: Coroutine performing one provider request, ``call(action, params)``
        clock: Monotonic clock in seconds
        sleep: Coroutine sleeping for the given seconds
        rng: Returns a float in [0, 1) used for jitter
    """

    BACKOFF_DECAY = 0.75
    SEVERE_THROTTLE_STREAK = 3

    def __init__(
        self,
        call: ProviderCall,
        *,
        read_concurrency: int | None = None,
        read_interval: float | None = None,
        write_interval: float | None = None,
        jitter_ratio: float | None = None,
        max_multiplier: float | None = None,
        max_attempts: int | None = None,
        submit_timeout: float | None = None,
        call_timeout: float | None = None,
        severe_retry_after: float | None = None,
        severe_throttle_streak: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        settings = get_settings()
        self._call = call
        self._jitter_ratio = settings.jitter_ratio if jitter_ratio is None else jitter_ratio
        self._max_multiplier = max_multiplier or settings.max_backoff_multiplier
        self._max_attempts = max_attempts or settings.dispatcher_max_attempts
        self._submit_timeout = submit_timeout or settings.dispatcher_submit_timeout
        self._call_timeout = call_timeout or settings.provider_call_timeout
        self._severe_retry_after = severe_retry_after or settings.severe_retry_after_seconds
        self._severe_streak = severe_throttle_streak or self.SEVERE_THROTTLE_STREAK
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self._lanes = {
            RequestKind.READ: _Lane(
                RequestKind.READ,
                read_concurrency or settings.read_concurrency,
                settings.read_interval_seconds if read_interval is None else read_interval,
            ),
            RequestKind.WRITE: _Lane(
                RequestKind.WRITE,
                1,
                settings.write_interval_seconds if write_interval is None else write_interval,
            ),
        }
        self._cooldown_until = 0.0
        self._throttle_streak = 0
        self._inflight: set[asyncio.Task] = set()
        self._dispatching: set[DispatchRequest] = set()
        self._closed = False

    # =========================================================================
    # Public API
    # =========================================================================

    async def submit(
        self,
        action: str,
        params: dict[str, Any] | None = None,
        kind: RequestKind | str = RequestKind.READ,
    ) -> Any:
        """Queue a provider call and wait for its decoded result.

        Args:
            action: Provider action name
            params: Query parameters
            kind: ``read`` or ``write`` lane

        Returns:
            Decoded provider reply

        Raises:
            ProviderError: RATE_LIMITED once attempts are exhausted, TIMEOUT when
                the request stays queued past its deadline or the call times
                out, UPSTREAM on shutdown, or the decoded error
        """
        if self._closed:
            raise RuntimeError("Dispatcher is closed")
        self._ensure_started()

        kind = RequestKind(kind)
        loop = asyncio.get_running_loop()
        request = DispatchRequest(
            action=action,
            params=dict(params or {}),
            kind=kind,
            future=loop.create_future(),
            deadline=self._clock() + self._submit_timeout,
        )
        lane = self._lanes[kind]
        lane.queue.append(request)
        lane.wakeup.set()

        # Only queue time counts against submit_timeout, a dispatched call
        # is bounded by call_timeout alone
        expiry = loop.call_later(self._submit_timeout, self._expire_queued, lane, request)
        try:
            return await request.future
        finally:
            expiry.cancel()

    def set_cooldown(self, seconds: float) -> None:
        """Stop every lane from dispatching for ``seconds``."""
        until = self._clock() + seconds
        if until > self._cooldown_until:
            self._cooldown_until = until
            logger.warning(f"Provider dispatcher cooling down for {seconds:.1f}s")
        for lane in self._lanes.values():
            lane.wakeup.set()

    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def backoff_multiplier(self, kind: RequestKind | str) -> float:
        return self._lanes[RequestKind(kind)].multiplier

    async def close(self) -> None:
        """Stop the lane pumps and fail every request not yet answered."""
        self._closed = True
        tasks = [lane.pump for lane in self._lanes.values() if lane.pump is not None]
        tasks.extend(self._inflight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Dispatched requests whose task was cancelled before it started
        pending = list(self._dispatching)
        self._dispatching.clear()
        for lane in self._lanes.values():
            pending.extend(lane.queue)
            lane.queue.clear()
            lane.pump = None
        for request in pending:
            if not request.finished:
                request.reject(ProviderError(ProviderErrorKind.UPSTREAM, "Dispatcher shut down"))

    # =========================================================================
    # Lane pumps
    # =========================================================================

    def _ensure_started(self) -> None:
        for lane in self._lanes.values():
            if lane.pump is None or lane.pump.done():
                lane.pump = asyncio.create_task(
                    self._pump(lane), name=f"dispatcher-{lane.kind.value}"
                )

    def _spacing(self, lane: _Lane) -> float:
        base = lane.interval * lane.multiplier
        return base + self._rng() * self._jitter_ratio * base

    async def _pump(self, lane: _Lane) -> None:
        while True:
            if not lane.queue:
                lane.wakeup.clear()
                await lane.wakeup.wait()
                continue

            await lane.semaphore.acquire()
            try:
                request = await self._next_ready(lane)
            except BaseException:
                lane.semaphore.release()
                raise

            if request is None:
                lane.semaphore.release()
                continue

            request.transition(RequestState.DISPATCHING)
            self._dispatching.add(request)
            task = asyncio.create_task(self._execute(lane, request))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _next_ready(self, lane: _Lane) -> DispatchRequest | None:
        """Wait until the head request may go out and pop it."""
        while lane.queue:
            request = lane.queue[0]

            if request.future.done():
                # Caller was cancelled while queued
                lane.queue.popleft()
                request.transition(RequestState.FAILED)
                continue

            ready_at = max(lane.next_slot, self._cooldown_until, request.not_before)
            if ready_at > request.deadline:
                lane.queue.popleft()
                request.reject(
                    ProviderError(
                        ProviderErrorKind.TIMEOUT,
                        f"Provider {request.action} could not be sent before its deadline",
                    )
                )
                continue

            wait = ready_at - self._clock()
            if wait > 0:
                await self._sleep(wait)
                continue

            lane.queue.popleft()
            lane.next_slot = self._clock() + self._spacing(lane)
            return request
        return None

    def _expire_queued(self, lane: _Lane, request: DispatchRequest) -> None:
        """Fail a request still waiting in its lane when submit_timeout runs out."""
        if request.state != RequestState.QUEUED or request.future.done():
            return
        lane.queue.remove(request)
        logger.warning(
            f"Provider {request.action} abandoned after {self._submit_timeout:g}s in queue"
        )
        request.reject(
            ProviderError(
                ProviderErrorKind.TIMEOUT,
                f"Provider {request.action} was not sent within {self._submit_timeout:g}s",
            )
        )

    async def _execute(self, lane: _Lane, request: DispatchRequest) -> None:
        try:
            request.attempts += 1
            try:
                result = await asyncio.wait_for(
                    self._call(request.action, request.params), timeout=self._call_timeout
                )
            except asyncio.CancelledError:
                if request.kind == RequestKind.WRITE:
                    logger.error(
                        f"Provider {request.action} {request.params} cancelled in flight, "
                        f"outcome unknown"
                    )
                request.reject(ProviderError(ProviderErrorKind.UPSTREAM, "Dispatcher shut down"))
                raise
            except asyncio.TimeoutError:
                self._throttle_streak = 0
                request.reject(
                    ProviderError(
                        ProviderErrorKind.TIMEOUT,
                        f"Provider {request.action} timed out after {self._call_timeout:g}s",
                    )
                )
                return
            except ProviderError as e:
                if e.kind == ProviderErrorKind.RATE_LIMITED:
                    self._on_throttled(lane, request, e)
                else:
                    self._throttle_streak = 0
                    request.reject(e)
                return
            except Exception as e:
                logger.exception(f"Provider {request.action} raised unexpectedly")
                request.reject(ProviderError(ProviderErrorKind.UPSTREAM, str(e)))
                return

            self._throttle_streak = 0
            lane.multiplier = max(1.0, lane.multiplier * self.BACKOFF_DECAY)
            if request.future.done() and request.kind == RequestKind.WRITE:
                logger.critical(
                    f"RECONCILIATION REQUIRED: provider {request.action} {request.params} "
                    f"succeeded after its caller went away: {result!r}"
                )
            request.resolve(result)
        finally:
            self._dispatching.discard(request)
            lane.semaphore.release()

    def _on_throttled(self, lane: _Lane, request: DispatchRequest, error: ProviderError) -> None:
        request.transition(RequestState.RETRY_SCHEDULED)
        self._throttle_streak += 1
        now = self._clock()

        if error.retry_after is not None:
            request.not_before = now + error.retry_after
            if error.retry_after >= self._severe_retry_after:
                self.set_cooldown(error.retry_after)
        else:
            lane.multiplier = min(lane.multiplier * 2, self._max_multiplier)
            lane.next_slot = max(lane.next_slot, now + self._spacing(lane))

        if self._throttle_streak >= self._severe_streak:
            self._throttle_streak = 0
            self.set_cooldown(lane.interval * self._max_multiplier)

        logger.warning(
            f"Provider {request.action} throttled (attempt {request.attempts}, "
            f"{lane.kind.value} backoff x{lane.multiplier:g})"
        )

        if request.attempts >= self._max_attempts:
            request.reject(error)
            return

        request.transition(RequestState.QUEUED)
        lane.queue.appendleft(request)
        lane.wakeup.set()
