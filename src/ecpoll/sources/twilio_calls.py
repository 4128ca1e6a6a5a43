from __future__ import annotations

import asyncio
import logging
import re
import urllib.parse
from dataclasses import dataclass
from typing import Any, Mapping

from ..http_utils import HttpClient, basic_auth_header, with_query_params
from ..models import CallRecord
from ..poller import PollOptions, poll_until
from ..predicates import field_equals, field_in


logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
TERMINAL_CALL_STATUSES = frozenset({"completed", "failed", "canceled", "busy", "no-answer"})


def format_phone_number(value: str) -> str:
    """
    规范化为 E.164：
    - 原始值以 + 开头则保留国家码
    - 10 位数字视为北美号码，补 +1
    - 11 位且以 1 开头，补 +
    - 其余情况按北美号码处理
    """
    digits = re.sub(r"\D", "", value or "")
    if (value or "").strip().startswith("+"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return f"+1{digits}"


def _calls_payload(data: Any, url: str) -> list[Mapping[str, Any]]:
    calls = data.get("calls") if isinstance(data, dict) else None
    if not isinstance(calls, list):
        raise ValueError(f"Twilio API expected object with 'calls' list: {url}")
    return [c for c in calls if isinstance(c, dict)]


@dataclass(slots=True)
class _TwilioAccount:
    account_sid: str
    auth_token: str
    http: HttpClient
    api_base: str = TWILIO_API_BASE

    def headers(self) -> Mapping[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": basic_auth_header(self.account_sid, self.auth_token),
        }

    def url(self, path: str) -> str:
        sid = urllib.parse.quote(self.account_sid, safe="")
        return f"{self.api_base}/Accounts/{sid}/{path}"


@dataclass(slots=True)
class TwilioCallLogSource:
    """
    Twilio 通话日志：拨往某号码的最近通话（Twilio 按开始时间倒序返回，即最新在前）。
    """

    account: _TwilioAccount
    to_number: str
    limit: int = 10

    def key(self) -> str:
        return f"twilio:calls:to={format_phone_number(self.to_number)}"

    def list_calls(self) -> list[CallRecord]:
        url = with_query_params(
            self.account.url("Calls.json"),
            {"To": format_phone_number(self.to_number), "PageSize": str(self.limit)},
        )
        resp = self.account.http.get(url, headers=self.account.headers())
        calls = _calls_payload(resp.json(), url)
        return [CallRecord.from_twilio(c) for c in calls[: self.limit]]

    async def fetch(self) -> list[CallRecord]:
        return await asyncio.to_thread(self.list_calls)


@dataclass(slots=True)
class TwilioCallSource:
    """
    单通电话（按 CallSid）的当前状态，快照恒为一条记录。
    """

    account: _TwilioAccount
    call_sid: str

    def key(self) -> str:
        return f"twilio:call:{self.call_sid}"

    def get_call(self) -> CallRecord:
        url = self.account.url(f"Calls/{urllib.parse.quote(self.call_sid, safe='')}.json")
        data = self.account.http.get(url, headers=self.account.headers()).json()
        if not isinstance(data, dict):
            raise ValueError(f"Twilio API expected object, got {type(data)}: {url}")
        return CallRecord.from_twilio(data)

    async def fetch(self) -> list[CallRecord]:
        return [await asyncio.to_thread(self.get_call)]


@dataclass(frozen=True, slots=True)
class CallVerification:
    to_number: str
    expected_caller_id: str
    call: CallRecord | None
    available_caller_ids: tuple[str, ...]

    @property
    def call_found(self) -> bool:
        return self.call is not None


def caller_id_is(number: str):  # noqa: ANN201
    return field_equals("from_number", format_phone_number(number))


class OutboundCallVerifier:
    """
    外呼核验：在 Twilio 通话日志中确认外呼已到达，且主叫号码（caller ID）符合预期。

    单次核验 verify_* 直接读一次日志；wait_* 系列基于轮询原语等待日志最终一致。
    """

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        http: HttpClient,
        options: PollOptions | None = None,
        api_base: str = TWILIO_API_BASE,
        limit: int = 10,
    ) -> None:
        if not account_sid or not auth_token:
            raise ValueError("Twilio credentials (account_sid, auth_token) are required")
        self._account = _TwilioAccount(account_sid=account_sid, auth_token=auth_token, http=http, api_base=api_base)
        self.options = options or PollOptions(timeout_seconds=60.0, interval_seconds=5.0)
        self.limit = limit

    def call_log(self, to_number: str, *, limit: int = 10) -> TwilioCallLogSource:
        return TwilioCallLogSource(account=self._account, to_number=to_number, limit=limit)

    def call(self, call_sid: str) -> TwilioCallSource:
        return TwilioCallSource(account=self._account, call_sid=call_sid)

    async def get_recent_calls_to_number(self, to_number: str, limit: int | None = None) -> list[CallRecord]:
        calls = await self.call_log(to_number, limit=limit or self.limit).fetch()
        logger.info("twilio recent calls: to=%s count=%d", format_phone_number(to_number), len(calls))
        return calls

    async def verify_outbound_call_with_caller_id(
        self,
        to_number: str,
        expected_caller_id: str,
        *,
        limit: int | None = None,
    ) -> CallVerification:
        calls = await self.call_log(to_number, limit=limit or self.limit).fetch()
        predicate = caller_id_is(expected_caller_id)
        found = next((c for c in calls if predicate(c)), None)
        if found is None:
            logger.warning(
                "no call with expected caller id: to=%s expected=%s available=%s",
                format_phone_number(to_number),
                format_phone_number(expected_caller_id),
                ",".join(c.from_number for c in calls) or "<none>",
            )
        else:
            logger.info("call found: sid=%s from=%s status=%s", found.sid, found.from_number, found.status)
        return CallVerification(
            to_number=format_phone_number(to_number),
            expected_caller_id=format_phone_number(expected_caller_id),
            call=found,
            available_caller_ids=tuple(c.from_number for c in calls),
        )

    async def verify_caller_id(self, to_number: str, expected_caller_id: str) -> bool:
        result = await self.verify_outbound_call_with_caller_id(to_number, expected_caller_id)
        return result.call_found

    async def wait_for_outbound_call(
        self,
        to_number: str,
        expected_caller_id: str,
        *,
        options: PollOptions | None = None,
        limit: int = 5,
    ) -> CallRecord:
        source = self.call_log(to_number, limit=limit)
        return await poll_until(
            source.fetch,
            caller_id_is(expected_caller_id),
            options=options or self.options,
            source=source.key(),
        )

    async def wait_for_call_completion(self, call_sid: str, *, options: PollOptions | None = None) -> CallRecord:
        source = self.call(call_sid)
        return await poll_until(
            source.fetch,
            field_in("status", TERMINAL_CALL_STATUSES),
            options=options or PollOptions(timeout_seconds=120.0, interval_seconds=5.0),
            source=source.key(),
        )
