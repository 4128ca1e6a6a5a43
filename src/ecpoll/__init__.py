"""
Eventual-Consistency Poller (ecpoll)

把“最终一致”的外部状态（电话通话日志、收件箱、DNS SRV 记录）转化为确定性的
测试断言：按间隔反复读取数据源，直到候选满足条件，或在截止时间后带着最后一次
快照失败。
"""

from .poller import (
    InvalidConfiguration,
    Matched,
    PollCancelled,
    PollError,
    PollOptions,
    PollTimeout,
    SourceError,
    TimedOut,
    poll,
    poll_until,
)
from .registry import PollRegistry

__all__ = [
    "InvalidConfiguration",
    "Matched",
    "PollCancelled",
    "PollError",
    "PollOptions",
    "PollRegistry",
    "PollTimeout",
    "SourceError",
    "TimedOut",
    "poll",
    "poll_until",
]
