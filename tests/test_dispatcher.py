"""Tests for the rate-limited dispatcher."""

import asyncio
from typing import Any

import pytest

from smsgate.core.exceptions import ProviderError, ProviderErrorKind
from smsgate.providers.dispatcher import (
    DispatchRequest,
    InvalidTransitionError,
    RateLimitedDispatcher,
    RequestKind,
    RequestState,
)


class FakeClock:
    """Monotonic clock advanced only by the dispatcher's own sleeps."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


class ScriptedCall:
    """Provider call replaying outcomes; the last outcome repeats."""

    def __init__(self, clock: FakeClock, *outcomes: Any):
        self.clock = clock
        self.outcomes = list(outcomes)
        self.times: list[float] = []
        self.actions: list[str] = []

    async def __call__(self, action: str, params: dict[str, Any]) -> Any:
        self.times.append(self.clock.now)
        self.actions.append(action)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def throttled(retry_after: float | None = None) -> ProviderError:
    return ProviderError(
        ProviderErrorKind.RATE_LIMITED,
        "Provider rate limit reached",
        token="TOO_MANY_REQUESTS",
        retry_after=retry_after,
    )


def make_dispatcher(call, clock: FakeClock, **overrides) -> RateLimitedDispatcher:
    options = {
        "read_interval": 0.5,
        "write_interval": 1.0,
        "jitter_ratio": 0.0,
        "max_multiplier": 6.0,
        "max_attempts": 8,
        "submit_timeout": 60.0,
        "severe_retry_after": 10.0,
        "severe_throttle_streak": 100,
    }
    options.update(overrides)
    return RateLimitedDispatcher(
        call, clock=clock, sleep=clock.sleep, rng=lambda: 0.0, **options
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Request state machine
# =============================================================================


class TestDispatchRequest:
    def _request(self) -> DispatchRequest:
        loop = asyncio.new_event_loop()
        try:
            future = loop.create_future()
        finally:
            loop.close()
        return DispatchRequest(
            action="getStatus", params={}, kind=RequestKind.READ, future=future, deadline=60.0
        )

    def test_retry_cycle_is_allowed(self):
        request = self._request()

        request.transition(RequestState.DISPATCHING)
        request.transition(RequestState.RETRY_SCHEDULED)
        request.transition(RequestState.QUEUED)
        request.transition(RequestState.DISPATCHING)
        request.transition(RequestState.SUCCEEDED)

        assert request.finished
        assert request.history == [
            RequestState.QUEUED,
            RequestState.DISPATCHING,
            RequestState.RETRY_SCHEDULED,
            RequestState.QUEUED,
            RequestState.DISPATCHING,
            RequestState.SUCCEEDED,
        ]

    def test_queued_cannot_succeed_directly(self):
        request = self._request()

        with pytest.raises(InvalidTransitionError):
            request.transition(RequestState.SUCCEEDED)

    def test_terminal_states_are_final(self):
        request = self._request()
        request.transition(RequestState.FAILED)

        with pytest.raises(InvalidTransitionError):
            request.transition(RequestState.QUEUED)
        assert request.state == RequestState.FAILED


# =============================================================================
# Scheduling
# =============================================================================


class TestRateLimitedDispatcher:
    @pytest.mark.asyncio
    async def test_success_decays_backoff(self, clock):
        call = ScriptedCall(clock, throttled(), "ACCESS_READY")
        dispatcher = make_dispatcher(call, clock)
        try:
            result = await dispatcher.submit("setStatus", {"id": "1"}, RequestKind.WRITE)
        finally:
            await dispatcher.close()

        assert result == "ACCESS_READY"
        assert len(call.times) == 2
        # doubled on the throttle, decayed by the success
        assert dispatcher.backoff_multiplier(RequestKind.WRITE) == pytest.approx(1.5)
        assert dispatcher.backoff_multiplier(RequestKind.READ) == 1.0

    @pytest.mark.asyncio
    async def test_throttle_spacing_never_shrinks(self, clock):
        call = ScriptedCall(clock, throttled())
        dispatcher = make_dispatcher(call, clock, max_attempts=5)
        try:
            with pytest.raises(ProviderError) as exc_info:
                await dispatcher.submit("getNumber", {}, RequestKind.WRITE)
        finally:
            await dispatcher.close()

        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert call.times == [0.0, 2.0, 6.0, 12.0, 18.0]
        gaps = [b - a for a, b in zip(call.times, call.times[1:])]
        assert gaps == sorted(gaps)
        assert dispatcher.backoff_multiplier(RequestKind.WRITE) == 6.0

    @pytest.mark.asyncio
    async def test_retry_after_is_honored(self, clock):
        call = ScriptedCall(clock, throttled(retry_after=5), "STATUS_WAIT_CODE")
        dispatcher = make_dispatcher(call, clock)
        try:
            result = await dispatcher.submit("getStatus", {"id": "1"}, RequestKind.READ)
        finally:
            await dispatcher.close()

        assert result == "STATUS_WAIT_CODE"
        assert call.times[1] - call.times[0] >= 5.0

    @pytest.mark.asyncio
    async def test_severe_retry_after_cools_down_every_lane(self, clock):
        async def call(action: str, params: dict[str, Any]) -> Any:
            times.setdefault(action, []).append(clock.now)
            if action == "getNumber" and len(times[action]) == 1:
                raise throttled(retry_after=30)
            return "OK"

        times: dict[str, list[float]] = {}
        dispatcher = make_dispatcher(call, clock)
        try:
            write = asyncio.create_task(dispatcher.submit("getNumber", {}, RequestKind.WRITE))
            while "getNumber" not in times:
                await asyncio.sleep(0)
            read = await dispatcher.submit("getPrices", {}, RequestKind.READ)
            assert await write == "OK"
        finally:
            await dispatcher.close()

        assert read == "OK"
        assert times["getPrices"][0] >= 30.0
        assert times["getNumber"][1] >= 30.0

    @pytest.mark.asyncio
    async def test_throttle_streak_triggers_cooldown(self, clock):
        call = ScriptedCall(clock, *[throttled(retry_after=1)] * 3, "OK")
        dispatcher = make_dispatcher(call, clock, severe_throttle_streak=3)
        try:
            assert await dispatcher.submit("setStatus", {}, RequestKind.WRITE) == "OK"
        finally:
            await dispatcher.close()

        assert call.times[:3] == [0.0, 1.0, 2.0]
        # third throttle in a row: interval x max multiplier
        assert call.times[3] - call.times[2] == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_non_throttle_errors_are_not_retried(self, clock):
        error = ProviderError(ProviderErrorKind.NO_INVENTORY, "No numbers", token="NO_NUMBERS")
        call = ScriptedCall(clock, error)
        dispatcher = make_dispatcher(call, clock)
        try:
            with pytest.raises(ProviderError) as exc_info:
                await dispatcher.submit("getNumber", {}, RequestKind.WRITE)
        finally:
            await dispatcher.close()

        assert exc_info.value.kind == ProviderErrorKind.NO_INVENTORY
        assert len(call.times) == 1

    @pytest.mark.asyncio
    async def test_call_timeout_is_not_retried(self, clock):
        attempts = []

        async def slow_call(action: str, params: dict[str, Any]) -> Any:
            attempts.append(action)
            await asyncio.sleep(5)

        dispatcher = make_dispatcher(slow_call, clock, call_timeout=0.05)
        try:
            with pytest.raises(ProviderError) as exc_info:
                await dispatcher.submit("getNumber", {}, RequestKind.WRITE)
        finally:
            await dispatcher.close()

        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT
        assert attempts == ["getNumber"]

    @pytest.mark.asyncio
    async def test_cooldown_past_deadline_times_out_without_calling(self, clock):
        call = ScriptedCall(clock, "OK")
        dispatcher = make_dispatcher(call, clock, submit_timeout=60.0)
        dispatcher.set_cooldown(120)
        try:
            with pytest.raises(ProviderError) as exc_info:
                await dispatcher.submit("getBalance", {}, RequestKind.READ)
        finally:
            await dispatcher.close()

        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT
        assert call.times == []

    @pytest.mark.asyncio
    async def test_lane_concurrency(self, clock):
        in_flight = {RequestKind.READ: 0, RequestKind.WRITE: 0}
        peak = {RequestKind.READ: 0, RequestKind.WRITE: 0}

        async def call(action: str, params: dict[str, Any]) -> Any:
            kind = RequestKind(params["kind"])
            in_flight[kind] += 1
            peak[kind] = max(peak[kind], in_flight[kind])
            await asyncio.sleep(0.01)
            in_flight[kind] -= 1
            return action

        dispatcher = make_dispatcher(
            call, clock, read_concurrency=2, read_interval=0.0, write_interval=0.0
        )
        try:
            results = await asyncio.gather(
                *[dispatcher.submit("getStatus", {"kind": "read"}, "read") for _ in range(4)],
                *[dispatcher.submit("setStatus", {"kind": "write"}, "write") for _ in range(3)],
            )
        finally:
            await dispatcher.close()

        assert len(results) == 7
        assert peak[RequestKind.READ] == 2
        assert peak[RequestKind.WRITE] == 1

    @pytest.mark.asyncio
    async def test_submit_after_close(self, clock):
        dispatcher = make_dispatcher(ScriptedCall(clock, "OK"), clock)
        await dispatcher.close()

        with pytest.raises(RuntimeError):
            await dispatcher.submit("getBalance")


# =============================================================================
# Ordering, deadlines and shutdown
# =============================================================================


class TestDispatchOrdering:
    @pytest.mark.asyncio
    async def test_throttled_write_runs_before_newer_writes(self, clock):
        calls: list[str] = []

        async def call(action: str, params: dict[str, Any]) -> Any:
            await asyncio.sleep(0)
            calls.append(action)
            if action == "A" and calls.count("A") == 1:
                raise throttled()
            return action

        dispatcher = make_dispatcher(call, clock)
        try:
            results = await asyncio.gather(
                *[dispatcher.submit(action, {}, RequestKind.WRITE) for action in "ABC"]
            )
        finally:
            await dispatcher.close()

        assert results == ["A", "B", "C"]
        assert calls == ["A", "A", "B", "C"]

    @pytest.mark.asyncio
    async def test_total_wait_grows_with_throttle_count(self):
        waits = []
        for throttles in range(6):
            fake = FakeClock()
            call = ScriptedCall(fake, *[throttled()] * throttles, "OK")
            dispatcher = make_dispatcher(call, fake)
            try:
                assert await dispatcher.submit("getNumber", {}, RequestKind.WRITE) == "OK"
            finally:
                await dispatcher.close()
            waits.append(call.times[-1])

        assert waits[0] == 0.0
        assert waits == sorted(set(waits))


class TestDispatchDeadlines:
    @pytest.mark.asyncio
    async def test_dispatched_call_outlives_submit_timeout(self, clock):
        async def slow_call(action: str, params: dict[str, Any]) -> Any:
            await asyncio.sleep(0.3)
            return "ACCESS_NUMBER:1001:79990001122"

        dispatcher = make_dispatcher(slow_call, clock, submit_timeout=0.1, call_timeout=5.0)
        try:
            result = await dispatcher.submit("getNumber", {"service": "tg"}, RequestKind.WRITE)
        finally:
            await dispatcher.close()

        assert result == "ACCESS_NUMBER:1001:79990001122"

    @pytest.mark.asyncio
    async def test_queued_request_times_out_behind_slow_call(self, clock):
        calls: list[str] = []

        async def call(action: str, params: dict[str, Any]) -> Any:
            calls.append(action)
            if action == "getNumber":
                await asyncio.sleep(0.3)
            return action

        dispatcher = make_dispatcher(
            call, clock, write_interval=0.0, submit_timeout=0.1, call_timeout=5.0
        )
        try:
            first = asyncio.create_task(dispatcher.submit("getNumber", {}, RequestKind.WRITE))
            second = asyncio.create_task(dispatcher.submit("setStatus", {}, RequestKind.WRITE))
            with pytest.raises(ProviderError) as exc_info:
                await second
            assert await first == "getNumber"
        finally:
            await dispatcher.close()

        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT
        assert calls == ["getNumber"]

    @pytest.mark.asyncio
    async def test_write_completing_after_caller_cancelled_is_logged(self, clock, caplog):
        started = asyncio.Event()

        async def call(action: str, params: dict[str, Any]) -> Any:
            started.set()
            await asyncio.sleep(0.1)
            return "ACCESS_NUMBER:1001:79990001122"

        dispatcher = make_dispatcher(call, clock)
        try:
            task = asyncio.create_task(
                dispatcher.submit("getNumber", {"service": "tg"}, RequestKind.WRITE)
            )
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(0.2)
        finally:
            await dispatcher.close()

        critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
        assert len(critical) == 1
        assert "getNumber" in critical[0].getMessage()
        assert "1001" in critical[0].getMessage()

    @pytest.mark.asyncio
    async def test_close_fails_in_flight_and_queued_requests(self, clock):
        started = asyncio.Event()

        async def call(action: str, params: dict[str, Any]) -> Any:
            started.set()
            await asyncio.sleep(5)
            return "ACCESS_READY"

        dispatcher = make_dispatcher(call, clock, submit_timeout=2.0, call_timeout=10.0)
        in_flight = asyncio.create_task(
            dispatcher.submit("setStatus", {"id": "1"}, RequestKind.WRITE)
        )
        queued = asyncio.create_task(dispatcher.submit("setStatus", {"id": "2"}, RequestKind.WRITE))
        await started.wait()

        await dispatcher.close()

        for task in (in_flight, queued):
            with pytest.raises(ProviderError) as exc_info:
                await asyncio.wait_for(task, timeout=0.5)
            assert exc_info.value.kind == ProviderErrorKind.UPSTREAM
            assert str(exc_info.value) == "Dispatcher shut down"
