from __future__ import annotations

import json
from typing import Any

from .poller import PollError


def describe_candidate(candidate: Any) -> str:
    to_json = getattr(candidate, "to_json_dict", None)
    if callable(to_json):
        candidate = to_json()
    try:
        return json.dumps(candidate, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(candidate)


def format_poll_failure(error: PollError, *, max_candidates: int = 10) -> str:
    """
    把轮询失败渲染成可直接作为测试失败信息的多行文本。

    包含：数据源、失败类型、尝试次数、等待时长、底层异常（如有），
    以及最后一次未命中快照中的前 max_candidates 条候选。
    """
    lines = [
        f"Poll failed: {type(error).__name__}",
        f"source: {error.source}",
        f"attempts: {error.attempts}",
        f"waited_ms: {int(error.elapsed_seconds * 1000)}",
        f"message: {error}",
    ]
    cause = error.__cause__
    if cause is not None:
        lines.append(f"cause: {type(cause).__name__}: {cause}")

    snapshot = error.last_snapshot
    lines.append(f"last_snapshot: {len(snapshot)} candidate(s)")
    for candidate in snapshot[:max_candidates]:
        lines.append(f"  - {describe_candidate(candidate)}")
    if len(snapshot) > max_candidates:
        lines.append(f"  ... {len(snapshot) - max_candidates} more")
    return "\n".join(lines)
