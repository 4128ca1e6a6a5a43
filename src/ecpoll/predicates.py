from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping


Predicate = Callable[[Any], bool]


def get_field(candidate: Any, name: str) -> Any:
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def field_equals(name: str, expected: Any) -> Predicate:
    def _predicate(candidate: Any) -> bool:
        return get_field(candidate, name) == expected

    return _predicate


def field_in(name: str, allowed: frozenset[Any] | set[Any] | tuple[Any, ...]) -> Predicate:
    allowed = frozenset(allowed)

    def _predicate(candidate: Any) -> bool:
        return get_field(candidate, name) in allowed

    return _predicate


@dataclass(frozen=True, slots=True)
class KeywordPredicate:
    """
    关键词匹配（大小写不敏感），在候选的若干文本字段拼接后的内容中查找。

    match_all 为 False 时命中任一关键词即可；为 True 时要求全部命中。
    matched_keywords() 返回实际命中的关键词，便于失败信息中给出原因。
    """

    keywords: tuple[str, ...]
    fields: tuple[str, ...] = ("subject", "text")
    match_all: bool = False

    def matched_keywords(self, candidate: Any) -> tuple[str, ...]:
        haystack = "\n".join(str(get_field(candidate, f) or "") for f in self.fields).lower()
        matched: list[str] = []
        for kw in self.keywords:
            k = (kw or "").strip().lower()
            if k and k in haystack:
                matched.append(k)
        return tuple(matched)

    def __call__(self, candidate: Any) -> bool:
        wanted = [k for k in self.keywords if (k or "").strip()]
        if not wanted:
            return False
        matched = self.matched_keywords(candidate)
        if self.match_all:
            return len(matched) == len(wanted)
        return bool(matched)


def all_of(*predicates: Predicate) -> Predicate:
    def _predicate(candidate: Any) -> bool:
        return all(p(candidate) for p in predicates)

    return _predicate


def any_of(*predicates: Predicate) -> Predicate:
    def _predicate(candidate: Any) -> bool:
        return any(p(candidate) for p in predicates)

    return _predicate


def always(candidate: Any) -> bool:  # noqa: ARG001
    return True
