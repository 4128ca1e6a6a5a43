import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import pytest

from ecpoll.poller import (
    InvalidConfiguration,
    Matched,
    PollCancelled,
    PollOptions,
    PollTimeout,
    SourceError,
    TimedOut,
    poll,
    poll_until,
)


@dataclass
class FakeClock:
    """
    虚拟时钟：sleep 只推进时间，不真正等待。
    """

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass
class ScriptedFetch:
    """
    按调用次序返回预设结果（异常则抛出），超出脚本长度后重复最后一项。
    """

    clock: FakeClock
    responses: list[Any]
    calls: list[float] = field(default_factory=list)

    async def __call__(self) -> list[Any]:
        self.calls.append(self.clock.now)
        r = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(r, Exception):
            raise r
        return r


def _id_is(value: str):  # noqa: ANN202
    return lambda c: c["id"] == value


def test_match_on_first_fetch_returns_without_sleeping() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "a"}]])
    record = asyncio.run(poll_until(fetch, _id_is("a"), clock=clock, sleep=clock.sleep))
    assert record == {"id": "a"}
    assert fetch.calls == [0.0]
    assert clock.sleeps == []


def test_match_after_second_fetch() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[], [{"id": "a"}]])
    options = PollOptions(timeout_seconds=12.0, interval_seconds=5.0)
    result = asyncio.run(poll(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert isinstance(result, Matched)
    assert result.record == {"id": "a"}
    assert result.attempts == 2
    assert result.elapsed_seconds == 5.0
    assert fetch.calls == [0.0, 5.0]


def test_never_matching_times_out_with_last_snapshot() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "x"}]])
    options = PollOptions(timeout_seconds=10.0, interval_seconds=5.0)
    with pytest.raises(PollTimeout) as exc:
        asyncio.run(poll_until(fetch, _id_is("y"), options=options, clock=clock, sleep=clock.sleep))
    assert exc.value.last_snapshot == ({"id": "x"},)
    assert exc.value.attempts == 3
    assert exc.value.elapsed_seconds == 10.0
    assert fetch.calls == [0.0, 5.0, 10.0]


def test_timeout_lands_within_one_interval_of_deadline() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "x"}]])
    options = PollOptions(timeout_seconds=12.0, interval_seconds=5.0)
    result = asyncio.run(poll(fetch, _id_is("y"), options=options, clock=clock, sleep=clock.sleep))
    assert isinstance(result, TimedOut)
    assert 12.0 <= result.elapsed_seconds < 17.0
    # 最后一次休眠被截断到剩余时间，截止时刻再读一次
    assert clock.sleeps == [5.0, 5.0, 2.0]
    assert fetch.calls == [0.0, 5.0, 10.0, 12.0]


def test_nth_fetch_match_makes_exactly_n_fetches() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[], [{"id": "b"}], [{"id": "b"}, {"id": "a"}], [{"id": "a"}]])
    options = PollOptions(timeout_seconds=60.0, interval_seconds=1.0)
    record = asyncio.run(poll_until(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert record == {"id": "a"}
    assert len(fetch.calls) == 3


def test_empty_results_until_deadline_is_timeout_not_crash() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[]])
    options = PollOptions(timeout_seconds=3.0, interval_seconds=1.0)
    with pytest.raises(PollTimeout) as exc:
        asyncio.run(poll_until(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert exc.value.last_snapshot == ()
    assert exc.value.attempts == 4


def test_first_match_in_source_order_wins() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "a", "n": 1}, {"id": "a", "n": 2}]])
    record = asyncio.run(poll_until(fetch, _id_is("a"), clock=clock, sleep=clock.sleep))
    assert record["n"] == 1


def test_source_error_fails_fast_by_default() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [ConnectionError("connection reset")])
    options = PollOptions(timeout_seconds=60.0, interval_seconds=5.0)
    with pytest.raises(SourceError) as exc:
        asyncio.run(poll_until(fetch, _id_is("a"), options=options, source="twilio", clock=clock, sleep=clock.sleep))
    assert isinstance(exc.value.__cause__, ConnectionError)
    assert exc.value.attempts == 1
    assert exc.value.source == "twilio"
    assert fetch.calls == [0.0]
    assert clock.sleeps == []


def test_source_error_retries_are_opt_in(caplog) -> None:  # noqa: ANN001
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [TimeoutError("read timed out"), [{"id": "a"}]])
    options = PollOptions(timeout_seconds=60.0, interval_seconds=5.0, source_error_retries=1)
    caplog.set_level(logging.WARNING)
    result = asyncio.run(poll(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert isinstance(result, Matched)
    assert result.attempts == 2
    assert "source error tolerated" in caplog.text


def test_source_error_retries_exhausted() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "x"}], OSError("boom")])
    options = PollOptions(timeout_seconds=60.0, interval_seconds=5.0, source_error_retries=2)
    with pytest.raises(SourceError) as exc:
        asyncio.run(poll_until(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert exc.value.attempts == 4
    assert exc.value.last_snapshot == ({"id": "x"},)


def test_source_errors_until_deadline_report_timeout() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [OSError("down")])
    options = PollOptions(timeout_seconds=10.0, interval_seconds=5.0, source_error_retries=10)
    result = asyncio.run(poll(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert isinstance(result, TimedOut)
    assert result.source_errors == 3


@pytest.mark.parametrize(
    "options",
    [
        PollOptions(timeout_seconds=10.0, interval_seconds=0.0),
        PollOptions(timeout_seconds=10.0, interval_seconds=-1.0),
        PollOptions(timeout_seconds=0.0, interval_seconds=1.0),
        PollOptions(timeout_seconds=10.0, interval_seconds=1.0, source_error_retries=-1),
    ],
)
def test_invalid_configuration_never_fetches(options: PollOptions) -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[{"id": "a"}]])
    with pytest.raises(InvalidConfiguration):
        asyncio.run(poll_until(fetch, _id_is("a"), options=options, clock=clock, sleep=clock.sleep))
    assert fetch.calls == []


def test_deadline_in_the_past_is_invalid() -> None:
    clock = FakeClock(now=100.0)
    fetch = ScriptedFetch(clock, [[{"id": "a"}]])
    with pytest.raises(InvalidConfiguration):
        asyncio.run(poll_until(fetch, _id_is("a"), deadline=99.0, clock=clock, sleep=clock.sleep))
    assert fetch.calls == []


def test_absolute_deadline_overrides_timeout() -> None:
    clock = FakeClock(now=100.0)
    fetch = ScriptedFetch(clock, [[]])
    options = PollOptions(timeout_seconds=600.0, interval_seconds=5.0)
    result = asyncio.run(poll(fetch, _id_is("a"), options=options, deadline=110.0, clock=clock, sleep=clock.sleep))
    assert isinstance(result, TimedOut)
    assert fetch.calls == [100.0, 105.0, 110.0]


def test_absolute_deadline_ignores_unset_timeout() -> None:
    clock = FakeClock(now=100.0)
    fetch = ScriptedFetch(clock, [[], [{"id": "a"}]])
    options = PollOptions(timeout_seconds=0, interval_seconds=5.0)
    result = asyncio.run(poll(fetch, _id_is("a"), options=options, deadline=110.0, clock=clock, sleep=clock.sleep))
    assert isinstance(result, Matched)
    assert fetch.calls == [100.0, 105.0]


def test_cancel_event_stops_before_next_fetch() -> None:
    clock = FakeClock()
    cancel = asyncio.Event()
    calls: list[float] = []

    async def fetch() -> list[dict]:
        calls.append(clock.now)
        cancel.set()
        return []

    with pytest.raises(PollCancelled) as exc:
        asyncio.run(poll_until(fetch, _id_is("a"), cancel_event=cancel, clock=clock, sleep=clock.sleep))
    assert calls == [0.0]
    assert exc.value.attempts == 1


def test_plain_synchronous_fetch_is_accepted() -> None:
    clock = FakeClock()
    record = asyncio.run(poll_until(lambda: [{"id": "a"}], _id_is("a"), clock=clock, sleep=clock.sleep))
    assert record == {"id": "a"}


def test_on_attempt_observes_every_fetch() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(clock, [[], [{"id": "b"}], [{"id": "a"}]])
    seen: list[tuple[int, int]] = []
    asyncio.run(
        poll_until(
            fetch,
            _id_is("a"),
            on_attempt=lambda attempt, snapshot: seen.append((attempt, len(snapshot))),
            clock=clock,
            sleep=clock.sleep,
        )
    )
    assert [a for a, _ in seen] == [1, 2, 3]


def test_real_event_loop_sleep() -> None:
    state = {"n": 0}

    async def fetch() -> list[int]:
        state["n"] += 1
        return [state["n"]]

    options = PollOptions(timeout_seconds=2.0, interval_seconds=0.01)
    assert asyncio.run(poll_until(fetch, lambda n: n >= 3, options=options)) == 3
