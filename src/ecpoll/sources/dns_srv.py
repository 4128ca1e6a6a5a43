from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..http_utils import HttpClient, with_query_params
from ..models import SrvRecord
from ..poller import PollOptions, SourceError, poll_until
from ..predicates import always


logger = logging.getLogger(__name__)

DEFAULT_DOH_ENDPOINT = "https://dns.google/resolve"

DNS_TYPE_A = 1
DNS_TYPE_SRV = 33
DNS_STATUS_NOERROR = 0
DNS_STATUS_NXDOMAIN = 3


def _normalize_name(name: str) -> str:
    return (name or "").strip().rstrip(".").lower()


def parse_srv_answer(answer: Mapping[str, Any]) -> SrvRecord:
    """
    解析 DoH JSON 中的一条 SRV 应答，data 形如 "10 60 5060 sip1.example.com."。
    """
    parts = str(answer.get("data") or "").split()
    if len(parts) != 4:
        raise ValueError(f"Malformed SRV data: {answer.get('data')!r}")
    priority, weight, port, target = parts
    ttl = answer.get("TTL")
    return SrvRecord(
        name=_normalize_name(str(answer.get("name") or "")),
        priority=int(priority),
        weight=int(weight),
        port=int(port),
        target=_normalize_name(target),
        ttl=int(ttl) if isinstance(ttl, int) else None,
    )


@dataclass(slots=True)
class DnsOverHttpsResolver:
    """
    通过 DNS-over-HTTPS 的 JSON 接口查询（dns.google / cloudflare-dns.com 兼容）。

    - NXDOMAIN 或无应答返回空列表：记录尚未生效属于正常状态
    - 其他非 0 的 DNS 状态码视为查询失败并抛 ValueError
    """

    http: HttpClient
    endpoint: str = DEFAULT_DOH_ENDPOINT

    def _answers(self, name: str, rtype: int) -> list[Mapping[str, Any]]:
        url = with_query_params(self.endpoint, {"name": name, "type": str(rtype)})
        data = self.http.get(url, headers={"Accept": "application/dns-json"}).json()
        if not isinstance(data, dict):
            raise ValueError(f"DoH expected object, got {type(data)}: {url}")
        status = data.get("Status", DNS_STATUS_NOERROR)
        if status == DNS_STATUS_NXDOMAIN:
            return []
        if status != DNS_STATUS_NOERROR:
            raise ValueError(f"DNS query failed: name={name} type={rtype} status={status}")
        answers = data.get("Answer") or []
        return [a for a in answers if isinstance(a, dict) and a.get("type") == rtype]

    def resolve_srv(self, name: str) -> list[SrvRecord]:
        records = [parse_srv_answer(a) for a in self._answers(name, DNS_TYPE_SRV)]
        # 优先级升序，同优先级按权重降序
        records.sort(key=lambda r: (r.priority, -r.weight, r.target))
        return records

    def resolve_a(self, name: str) -> list[str]:
        return [str(a.get("data")) for a in self._answers(name, DNS_TYPE_A) if a.get("data")]


@dataclass(slots=True)
class DnsSrvSource:
    name: str
    resolver: DnsOverHttpsResolver

    def key(self) -> str:
        return f"dns:srv:{_normalize_name(self.name)}"

    async def fetch(self) -> list[SrvRecord]:
        return await asyncio.to_thread(self.resolver.resolve_srv, self.name)


@dataclass(frozen=True, slots=True)
class SrvLookup:
    record: SrvRecord
    ip_addresses: tuple[str, ...]

    def to_json_dict(self) -> dict[str, Any]:
        return {**self.record.to_json_dict(), "ip_addresses": list(self.ip_addresses)}


def srv_target_is(target: str):  # noqa: ANN201
    wanted = _normalize_name(target)

    def _predicate(record: SrvRecord) -> bool:
        return record.target == wanted

    return _predicate


async def wait_for_srv_target(
    resolver: DnsOverHttpsResolver,
    name: str,
    target: str,
    *,
    options: PollOptions | None = None,
) -> SrvRecord:
    """
    等待 SRV 记录中出现指定 target（DNS 变更传播需要时间）。
    """
    source = DnsSrvSource(name=name, resolver=resolver)
    return await poll_until(
        source.fetch,
        srv_target_is(target),
        options=options or PollOptions(timeout_seconds=300.0, interval_seconds=10.0),
        source=source.key(),
    )


async def lookup_primary_srv(
    resolver: DnsOverHttpsResolver,
    name: str,
    *,
    options: PollOptions | None = None,
) -> SrvLookup:
    """
    等待 SRV 记录可查，取优先级最高的一条，并把 target 解析为 IPv4 地址。
    """
    source = DnsSrvSource(name=name, resolver=resolver)
    record = await poll_until(
        source.fetch,
        always,
        options=options or PollOptions(timeout_seconds=30.0, interval_seconds=5.0),
        source=source.key(),
    )
    try:
        ips = await asyncio.to_thread(resolver.resolve_a, record.target)
    except (ValueError, OSError) as e:
        raise SourceError(
            f"{source.key()}: A lookup failed for target {record.target}: {type(e).__name__}: {e}",
            source=source.key(),
            attempts=1,
            last_snapshot=(record,),
        ) from e
    logger.info("primary srv target: name=%s target=%s port=%d ips=%s", name, record.target, record.port, ",".join(ips))
    return SrvLookup(record=record, ip_addresses=tuple(ips))
