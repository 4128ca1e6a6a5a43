from __future__ import annotations

import asyncio
import email
import imaplib
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from email import policy
from email.message import EmailMessage
from email.utils import getaddresses, parseaddr
from typing import Any, Callable, Sequence

from ..models import InboxMessage, extract_urls, parse_rfc2822_datetime
from ..poller import PollOptions, poll_until
from ..predicates import Predicate, always


logger = logging.getLogger(__name__)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def imap_date(value: datetime) -> str:
    """
    IMAP SEARCH 使用的日期（DD-Mon-YYYY），不依赖 locale 的 %b。
    """
    value = value.astimezone(UTC)
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def _body_text(msg: EmailMessage, subtype: str) -> str:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return ""
    try:
        return str(part.get_content())
    except (LookupError, ValueError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_message(uid: str, raw: bytes, received_at: datetime | None = None) -> InboxMessage:
    """
    received_at 优先取服务器的 INTERNALDATE；缺失时退回发件方填写的 Date 头。
    """
    msg = email.message_from_bytes(raw, policy=policy.default)
    text = _body_text(msg, "plain")
    html = _body_text(msg, "html")
    recipients = getaddresses([str(v) for v in (msg.get_all("To") or []) + (msg.get_all("Cc") or [])])
    return InboxMessage(
        uid=uid,
        subject=str(msg.get("Subject") or ""),
        from_address=parseaddr(str(msg.get("From") or ""))[1],
        to_addresses=tuple(addr for _, addr in recipients if addr),
        text=text,
        html=html,
        urls=extract_urls(text or html),
        received_at=received_at or parse_rfc2822_datetime(str(msg.get("Date") or "")),
    )


def _raw_from_fetch(data: Sequence[Any]) -> bytes | None:
    for item in data or ():
        if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], (bytes, bytearray)):
            return bytes(item[1])
    return None


def _internaldate_from_fetch(data: Sequence[Any]) -> datetime | None:
    for item in data or ():
        if isinstance(item, tuple) and item and isinstance(item[0], (bytes, bytearray)):
            tt = imaplib.Internaldate2tuple(bytes(item[0]))
            if tt is not None:
                return datetime.fromtimestamp(time.mktime(tt), tz=UTC)
    return None


@dataclass(slots=True)
class ImapInboxSource:
    """
    IMAP 收件箱：返回 after 之后收到的邮件，按收信时间正序（最早在前）。

    只读约定：以 readonly 方式 SELECT，FETCH 不会改变 \\Seen 标记。
    address 非空时只保留 To/Cc 中包含该地址的邮件（共享邮箱按别名区分收件人）。
    """

    host: str
    username: str
    password: str
    after: datetime
    port: int = 993
    mailbox: str = "INBOX"
    address: str | None = None
    connect: Callable[[str, int], Any] = imaplib.IMAP4_SSL

    def __post_init__(self) -> None:
        if self.after.tzinfo is None:
            self.after = self.after.replace(tzinfo=UTC)

    def key(self) -> str:
        return f"imap:{self.username}@{self.host}/{self.mailbox}"

    def _accepts(self, message: InboxMessage) -> bool:
        if message.received_at is None or message.received_at <= self.after:
            return False
        if self.address:
            wanted = self.address.lower()
            return any(a.lower() == wanted for a in message.to_addresses)
        return True

    def list_messages(self) -> list[InboxMessage]:
        client = self.connect(self.host, self.port)
        try:
            client.login(self.username, self.password)
            typ, _ = client.select(self.mailbox, readonly=True)
            if typ != "OK":
                raise ValueError(f"IMAP select failed: mailbox={self.mailbox} status={typ}")
            typ, data = client.uid("SEARCH", None, "SINCE", imap_date(self.after))
            if typ != "OK":
                raise ValueError(f"IMAP search failed: status={typ}")
            uids = data[0].split() if data and data[0] else []

            messages: list[InboxMessage] = []
            for uid in uids:
                typ, fetched = client.uid("FETCH", uid, "(INTERNALDATE BODY.PEEK[])")
                raw = _raw_from_fetch(fetched) if typ == "OK" else None
                if raw is None:
                    raise ValueError(f"IMAP fetch returned no body: uid={uid!r} status={typ}")
                message = parse_message(
                    uid.decode("ascii") if isinstance(uid, bytes) else str(uid),
                    raw,
                    received_at=_internaldate_from_fetch(fetched),
                )
                if self._accepts(message):
                    messages.append(message)
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.warning("imap logout failed: host=%s", self.host, exc_info=True)

        messages.sort(key=lambda m: m.received_at)
        return messages

    async def fetch(self) -> list[InboxMessage]:
        return await asyncio.to_thread(self.list_messages)


class Inbox:
    """
    收件箱等待：以 IMAP 作为最终一致的数据源，等待“某时刻之后”到达的邮件。
    """

    def __init__(
        self,
        *,
        host: str,
        username: str,
        password: str,
        port: int = 993,
        mailbox: str = "INBOX",
        address: str | None = None,
        options: PollOptions | None = None,
        connect: Callable[[str, int], Any] = imaplib.IMAP4_SSL,
    ) -> None:
        self.host = host
        self.username = username
        self.password = password
        self.port = port
        self.mailbox = mailbox
        self.address = address or username
        self.options = options or PollOptions(timeout_seconds=240.0, interval_seconds=5.0)
        self._connect = connect

    @property
    def email_address(self) -> str:
        return self.address

    def source(self, after: datetime) -> ImapInboxSource:
        return ImapInboxSource(
            host=self.host,
            username=self.username,
            password=self.password,
            after=after,
            port=self.port,
            mailbox=self.mailbox,
            address=self.address,
            connect=self._connect,
        )

    async def wait_for_message(
        self,
        *,
        after: datetime,
        predicate: Predicate = always,
        options: PollOptions | None = None,
    ) -> InboxMessage:
        source = self.source(after)
        return await poll_until(source.fetch, predicate, options=options or self.options, source=source.key())

    async def wait_for_messages(
        self,
        *,
        after: datetime,
        count: int,
        predicate: Predicate = always,
        options: PollOptions | None = None,
    ) -> tuple[InboxMessage, ...]:
        """
        等待至少 count 封满足 predicate 的邮件，返回最早到达的 count 封。

        实现方式：把每次收件箱快照折叠成一个“批次”候选，再对批次做数量判断。
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        source = self.source(after)

        async def fetch_batch() -> list[tuple[InboxMessage, ...]]:
            return [tuple(m for m in await source.fetch() if predicate(m))]

        batch = await poll_until(
            fetch_batch,
            lambda b: len(b) >= count,
            options=options or self.options,
            source=source.key(),
        )
        return batch[:count]
