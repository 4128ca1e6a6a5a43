from __future__ import annotations

from typing import Protocol, Sequence, TypeVar


T_co = TypeVar("T_co", covariant=True)


class Source(Protocol[T_co]):
    """
    数据源适配器接口：只暴露一次“读取最新状态”的 fetch，返回有序候选序列。

    约定：
    - fetch 必须是只读的（轮询会反复调用）
    - 返回顺序由数据源定义，调用方需据此设计 predicate
    - 读取失败直接抛异常，由轮询层按策略处理
    """

    def key(self) -> str: ...

    async def fetch(self) -> Sequence[T_co]: ...
