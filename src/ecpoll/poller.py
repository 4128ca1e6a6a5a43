from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar, Union


logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetch = Callable[[], Union[Awaitable[Sequence[T]], Sequence[T]]]
Predicate = Callable[[T], bool]
AttemptObserver = Callable[[int, tuple[Any, ...]], None]

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_INTERVAL_SECONDS = 5.0


class PollError(Exception):
    """
    轮询失败的基类。

    携带诊断上下文：
    - source：数据源标识（日志/报错定位用）
    - attempts：已执行的 fetch 次数
    - elapsed_seconds：已等待时长
    - last_snapshot：最近一次成功 fetch 但未命中的候选序列
    """

    def __init__(
        self,
        message: str,
        *,
        source: str = "fetch",
        attempts: int = 0,
        elapsed_seconds: float = 0.0,
        last_snapshot: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.source = source
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        self.last_snapshot = tuple(last_snapshot)


class InvalidConfiguration(PollError):
    pass


class PollTimeout(PollError):
    pass


class SourceError(PollError):
    pass


class PollCancelled(PollError):
    pass


@dataclass(frozen=True, slots=True)
class PollOptions:
    """
    轮询策略。

    timeout_seconds:
      - 从开始轮询算起的最长等待时间
    interval_seconds:
      - 两次 fetch 之间的休眠间隔（会被截断到剩余时间）
    source_error_retries:
      - fetch 自身报错时允许容忍的次数；默认 0，即首次报错立即失败
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    source_error_retries: int = 0

    def validate(self, *, check_timeout: bool = True) -> None:
        if self.interval_seconds <= 0:
            raise InvalidConfiguration(f"interval_seconds must be > 0, got {self.interval_seconds}")
        if check_timeout and self.timeout_seconds <= 0:
            raise InvalidConfiguration(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.source_error_retries < 0:
            raise InvalidConfiguration(f"source_error_retries must be >= 0, got {self.source_error_retries}")


DEFAULT_OPTIONS = PollOptions()


@dataclass(frozen=True, slots=True)
class Matched(Generic[T]):
    record: T
    attempts: int
    elapsed_seconds: float


@dataclass(frozen=True, slots=True)
class TimedOut(Generic[T]):
    last_snapshot: tuple[T, ...]
    attempts: int
    elapsed_seconds: float
    source_errors: int = 0


PollResult = Union[Matched[T], TimedOut[T]]


async def _fetch_snapshot(fetch: Fetch[T]) -> tuple[T, ...]:
    result = fetch()
    if inspect.isawaitable(result):
        result = await result
    return tuple(result)


async def poll(
    fetch: Fetch[T],
    predicate: Predicate[T],
    *,
    options: PollOptions = DEFAULT_OPTIONS,
    deadline: float | None = None,
    source: str = "fetch",
    cancel_event: asyncio.Event | None = None,
    on_attempt: AttemptObserver | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollResult[T]:
    """
    反复调用 fetch，直到某个候选满足 predicate 或超过截止时间。

    约定：
    - 每次按 fetch 返回的顺序扫描，返回第一个命中的候选
    - 空序列是正常的“尚未就绪”，不是错误
    - 休眠时间截断到剩余时间，因此截止时刻总会再 fetch 一次
    - deadline 为 clock() 口径的绝对时间，给出时覆盖 options.timeout_seconds
    - 超时返回 TimedOut（携带最后一次未命中的快照），不抛异常
    """
    options.validate(check_timeout=deadline is None)
    start = clock()
    timeout_seconds = options.timeout_seconds
    if deadline is not None:
        timeout_seconds = deadline - start
        if timeout_seconds <= 0:
            raise InvalidConfiguration(
                f"deadline is already in the past: source={source} overdue_seconds={-timeout_seconds:.3f}",
                source=source,
            )

    attempts = 0
    source_errors = 0
    last_snapshot: tuple[T, ...] = ()
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise PollCancelled(
                f"{source}: poll cancelled after {attempts} attempts",
                source=source,
                attempts=attempts,
                elapsed_seconds=clock() - start,
                last_snapshot=last_snapshot,
            )

        attempts += 1
        try:
            snapshot = await _fetch_snapshot(fetch)
        except Exception as e:  # noqa: BLE001
            source_errors += 1
            elapsed = clock() - start
            if source_errors > options.source_error_retries:
                raise SourceError(
                    f"{source}: fetch failed on attempt {attempts}: {type(e).__name__}: {e}",
                    source=source,
                    attempts=attempts,
                    elapsed_seconds=elapsed,
                    last_snapshot=last_snapshot,
                ) from e
            logger.warning(
                "source error tolerated: source=%s attempt=%d source_errors=%d/%d error=%s: %s",
                source,
                attempts,
                source_errors,
                options.source_error_retries,
                type(e).__name__,
                e,
            )
        else:
            for candidate in snapshot:
                if predicate(candidate):
                    elapsed = clock() - start
                    if on_attempt is not None:
                        on_attempt(attempts, snapshot)
                    logger.info(
                        "poll matched: source=%s attempts=%d elapsed_ms=%d",
                        source,
                        attempts,
                        int(elapsed * 1000),
                    )
                    return Matched(record=candidate, attempts=attempts, elapsed_seconds=elapsed)
            last_snapshot = snapshot
            logger.debug(
                "poll not matched yet: source=%s attempt=%d candidates=%d",
                source,
                attempts,
                len(snapshot),
            )

        if on_attempt is not None:
            on_attempt(attempts, last_snapshot)

        elapsed = clock() - start
        remaining = timeout_seconds - elapsed
        if remaining <= 0:
            logger.info(
                "poll timed out: source=%s attempts=%d elapsed_ms=%d last_candidates=%d",
                source,
                attempts,
                int(elapsed * 1000),
                len(last_snapshot),
            )
            return TimedOut(
                last_snapshot=last_snapshot,
                attempts=attempts,
                elapsed_seconds=elapsed,
                source_errors=source_errors,
            )
        await sleep(min(options.interval_seconds, remaining))


def unwrap(result: PollResult[T], *, source: str = "fetch", timeout_seconds: float | None = None) -> T:
    """
    Matched -> 命中的记录；TimedOut -> 抛出 PollTimeout。
    """
    if isinstance(result, Matched):
        return result.record
    limit = f" (timeout={timeout_seconds:g}s)" if timeout_seconds is not None else ""
    raise PollTimeout(
        f"{source}: no matching candidate after {result.attempts} attempts in {result.elapsed_seconds:.1f}s{limit}",
        source=source,
        attempts=result.attempts,
        elapsed_seconds=result.elapsed_seconds,
        last_snapshot=result.last_snapshot,
    )


async def poll_until(
    fetch: Fetch[T],
    predicate: Predicate[T],
    *,
    options: PollOptions = DEFAULT_OPTIONS,
    deadline: float | None = None,
    source: str = "fetch",
    cancel_event: asyncio.Event | None = None,
    on_attempt: AttemptObserver | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    poll() 的断言版：返回命中的记录，超时抛 PollTimeout。
    """
    result = await poll(
        fetch,
        predicate,
        options=options,
        deadline=deadline,
        source=source,
        cancel_event=cancel_event,
        on_attempt=on_attempt,
        clock=clock,
        sleep=sleep,
    )
    return unwrap(result, source=source, timeout_seconds=None if deadline is not None else options.timeout_seconds)
