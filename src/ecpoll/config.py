from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .poller import DEFAULT_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS, PollOptions
from .sources.dns_srv import DEFAULT_DOH_ENDPOINT


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class TwilioConfig:
    """
    Twilio 通话日志数据源配置。

    account_sid_env / auth_token_env:
      - 凭据所在的环境变量名（凭据本身不落盘）
    limit:
      - 每次拉取的最近通话条数
    """

    account_sid_env: str = "TWILIO_ACCOUNT_SID"
    auth_token_env: str = "TWILIO_AUTH_TOKEN"
    limit: int = 10
    api_base: str = "https://api.twilio.com/2010-04-01"


@dataclass(frozen=True, slots=True)
class InboxConfig:
    """
    IMAP 收件箱配置。

    address:
      - 期望的收件地址（共享邮箱别名）；为空时使用登录用户名
    """

    imap_host: str
    imap_port: int = 993
    mailbox: str = "INBOX"
    user_env: str = "INBOX_USER"
    password_env: str = "INBOX_PASSWORD"
    address: str | None = None


@dataclass(frozen=True, slots=True)
class DnsConfig:
    doh_endpoint: str = DEFAULT_DOH_ENDPOINT


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    poll:
      - 全局默认轮询策略（超时/间隔/容忍的数据源错误次数）
    twilio / inbox / dns:
      - 各数据源配置；未配置的数据源为 None
    """

    poll: PollOptions
    twilio: TwilioConfig | None
    inbox: InboxConfig | None
    dns: DnsConfig

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def parse_config(raw: Any) -> AppConfig:
    """
    JSON 顶层结构（示意）：
    {
      "poll": { "timeout_seconds": 60, "interval_seconds": 5, "source_error_retries": 0 },
      "twilio": { "account_sid_env": "TWILIO_ACCOUNT_SID", "auth_token_env": "TWILIO_AUTH_TOKEN", "limit": 10 },
      "inbox": { "imap_host": "imap.example.com", "user_env": "INBOX_USER", "password_env": "INBOX_PASSWORD" },
      "dns": { "doh_endpoint": "https://dns.google/resolve" }
    }
    """
    root = _require_dict(raw, where="$")

    p = _require_dict(root.get("poll", {}), where="$.poll")
    poll = PollOptions(
        timeout_seconds=_get_float(p, "timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        interval_seconds=_get_float(p, "interval_seconds", DEFAULT_INTERVAL_SECONDS),
        source_error_retries=_get_int(p, "source_error_retries", 0),
    )
    poll.validate()

    twilio_cfg: TwilioConfig | None = None
    if isinstance(root.get("twilio"), dict):
        tw = _require_dict(root["twilio"], where="$.twilio")
        twilio_cfg = TwilioConfig(
            account_sid_env=str(tw.get("account_sid_env") or "TWILIO_ACCOUNT_SID"),
            auth_token_env=str(tw.get("auth_token_env") or "TWILIO_AUTH_TOKEN"),
            limit=max(1, _get_int(tw, "limit", 10)),
            api_base=str(tw.get("api_base") or "https://api.twilio.com/2010-04-01"),
        )

    inbox_cfg: InboxConfig | None = None
    if isinstance(root.get("inbox"), dict):
        ib = _require_dict(root["inbox"], where="$.inbox")
        host = _get_str(ib, "imap_host")
        if not host:
            raise ValueError("Missing $.inbox.imap_host")
        inbox_cfg = InboxConfig(
            imap_host=host,
            imap_port=_get_int(ib, "imap_port", 993),
            mailbox=str(ib.get("mailbox") or "INBOX"),
            user_env=str(ib.get("user_env") or "INBOX_USER"),
            password_env=str(ib.get("password_env") or "INBOX_PASSWORD"),
            address=_get_str(ib, "address"),
        )

    d = _require_dict(root.get("dns", {}), where="$.dns")
    dns_cfg = DnsConfig(doh_endpoint=str(d.get("doh_endpoint") or DEFAULT_DOH_ENDPOINT))

    return AppConfig(poll=poll, twilio=twilio_cfg, inbox=inbox_cfg, dns=dns_cfg)


def load_config(config_path: str) -> AppConfig:
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))
    return parse_config(raw)
