from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from .models import utc_now
from .poller import (
    DEFAULT_OPTIONS,
    Fetch,
    PollCancelled,
    PollOptions,
    PollTimeout,
    Predicate,
    SourceError,
    T,
    poll,
    unwrap,
)
from .sources.base import Source


logger = logging.getLogger(__name__)

STATUS_POLLING = "polling"
STATUS_MATCHED = "matched"
STATUS_TIMED_OUT = "timed_out"
STATUS_SOURCE_ERRORED = "source_errored"
STATUS_CANCELLED = "cancelled"
STATUS_FAILED = "failed"


@dataclass(slots=True)
class PollState:
    poll_id: str
    source_key: str
    started_at: datetime
    status: str = STATUS_POLLING
    attempts: int = 0
    finished_at: datetime | None = None
    duration_ms: int = 0
    error: str | None = None
    record: Any = None


@dataclass(slots=True)
class RegistryReport:
    polls: tuple[PollState, ...]
    polling: int
    matched: int
    timed_out: int
    source_errored: int
    cancelled: int
    failed: int


@dataclass(slots=True)
class PollRegistry:
    """
    调用方持有的轮询登记表：poll_id -> PollState。

    不是全局状态：由测试步骤/协调者创建并按引用传给协作者。
    同一 poll_id 在仍处于 polling 状态时不允许重复启动。
    """

    polls: dict[str, PollState] = field(default_factory=dict)

    def get(self, poll_id: str) -> PollState | None:
        return self.polls.get(poll_id)

    def active(self) -> tuple[PollState, ...]:
        return tuple(s for s in self.polls.values() if s.status == STATUS_POLLING)

    async def run(
        self,
        poll_id: str,
        fetch: Fetch[T],
        predicate: Predicate[T],
        *,
        source_key: str | None = None,
        options: PollOptions = DEFAULT_OPTIONS,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> T:
        existing = self.polls.get(poll_id)
        if existing is not None and existing.status == STATUS_POLLING:
            raise ValueError(f"poll already running: poll_id={poll_id}")

        options.validate()
        source = source_key or poll_id
        state = PollState(poll_id=poll_id, source_key=source, started_at=utc_now())
        self.polls[poll_id] = state
        start_t = clock()

        def _observe(attempt: int, snapshot: tuple[Any, ...]) -> None:  # noqa: ARG001
            state.attempts = attempt

        try:
            result = await poll(
                fetch,
                predicate,
                options=options,
                source=source,
                cancel_event=cancel_event,
                on_attempt=_observe,
                clock=clock,
                sleep=sleep,
            )
            state.attempts = result.attempts
            record = unwrap(result, source=source, timeout_seconds=options.timeout_seconds)
        except PollTimeout as e:
            state.status = STATUS_TIMED_OUT
            state.error = str(e)
            raise
        except SourceError as e:
            state.status = STATUS_SOURCE_ERRORED
            state.attempts = e.attempts
            state.error = str(e)
            raise
        except (PollCancelled, asyncio.CancelledError) as e:
            state.status = STATUS_CANCELLED
            state.error = str(e) or type(e).__name__
            raise
        else:
            state.status = STATUS_MATCHED
            state.record = record
            return record
        finally:
            if state.status == STATUS_POLLING:
                state.status = STATUS_FAILED
            state.finished_at = utc_now()
            state.duration_ms = int((clock() - start_t) * 1000)
            logger.debug(
                "poll finished: poll_id=%s source=%s status=%s attempts=%d duration_ms=%d",
                poll_id,
                source,
                state.status,
                state.attempts,
                state.duration_ms,
            )

    async def run_source(
        self,
        poll_id: str,
        source: Source[T],
        predicate: Predicate[T],
        *,
        options: PollOptions = DEFAULT_OPTIONS,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        return await self.run(
            poll_id,
            source.fetch,
            predicate,
            source_key=source.key(),
            options=options,
            cancel_event=cancel_event,
        )

    def report(self) -> RegistryReport:
        states = tuple(self.polls.values())
        counts = {s: 0 for s in (STATUS_POLLING, STATUS_MATCHED, STATUS_TIMED_OUT, STATUS_SOURCE_ERRORED, STATUS_CANCELLED, STATUS_FAILED)}
        for s in states:
            counts[s.status] = counts.get(s.status, 0) + 1
        return RegistryReport(
            polls=states,
            polling=counts[STATUS_POLLING],
            matched=counts[STATUS_MATCHED],
            timed_out=counts[STATUS_TIMED_OUT],
            source_errored=counts[STATUS_SOURCE_ERRORED],
            cancelled=counts[STATUS_CANCELLED],
            failed=counts[STATUS_FAILED],
        )
