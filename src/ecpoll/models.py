from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Mapping


_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析 RFC3339/ISO8601 时间串为带 tzinfo 的 datetime（无时区按 UTC 处理）。
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def parse_rfc2822_datetime(value: str | None) -> datetime | None:
    """
    解析 RFC2822 时间串（Twilio API 与邮件 Date 头均使用该格式）。

    示例：Tue, 10 Feb 2026 12:34:56 +0000
    """
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def extract_urls(text: str) -> tuple[str, ...]:
    seen: list[str] = []
    for url in _URL_RE.findall(text or ""):
        url = url.rstrip(".,;")
        if url not in seen:
            seen.append(url)
    return tuple(seen)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True, slots=True)
class CallRecord:
    """
    电话日志中的一条通话记录（字段与 Twilio Calls 资源对齐，号码均为 E.164）。
    """

    sid: str
    from_number: str
    to_number: str
    status: str
    start_time: datetime | None
    end_time: datetime | None
    duration_seconds: int | None
    raw: Mapping[str, Any] | None = None

    @classmethod
    def from_twilio(cls, item: Mapping[str, Any]) -> "CallRecord":
        duration = item.get("duration")
        try:
            duration_seconds = int(duration) if duration not in (None, "") else None
        except (TypeError, ValueError):
            duration_seconds = None
        return cls(
            sid=str(item.get("sid") or ""),
            from_number=str(item.get("from") or ""),
            to_number=str(item.get("to") or ""),
            status=str(item.get("status") or ""),
            start_time=parse_rfc2822_datetime(item.get("start_time")),
            end_time=parse_rfc2822_datetime(item.get("end_time")),
            duration_seconds=duration_seconds,
            raw=item,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "sid": self.sid,
            "from": self.from_number,
            "to": self.to_number,
            "status": self.status,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True, slots=True)
class InboxMessage:
    """
    收件箱中的一封邮件。urls 从正文（优先纯文本，其次 HTML）中按出现顺序提取。
    """

    uid: str
    subject: str
    from_address: str
    to_addresses: tuple[str, ...]
    text: str
    html: str
    urls: tuple[str, ...]
    received_at: datetime | None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "subject": self.subject,
            "from": self.from_address,
            "to": list(self.to_addresses),
            "text": self.text,
            "urls": list(self.urls),
            "received_at": _iso(self.received_at),
        }


@dataclass(frozen=True, slots=True)
class SrvRecord:
    name: str
    priority: int
    weight: int
    port: int
    target: str
    ttl: int | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "weight": self.weight,
            "port": self.port,
            "target": self.target,
            "ttl": self.ttl,
        }
