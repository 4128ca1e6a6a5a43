from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import AppConfig
from .http_utils import HttpClient
from .sources.dns_srv import DnsOverHttpsResolver
from .sources.inbox import Inbox
from .sources.twilio_calls import OutboundCallVerifier


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Clients:
    call_verifier: OutboundCallVerifier | None
    inbox: Inbox | None
    resolver: DnsOverHttpsResolver


def build_clients(config: AppConfig, *, http: HttpClient | None = None) -> Clients:
    """
    根据配置装配各数据源客户端。

    - 凭据只从环境变量读取；缺失凭据的数据源不装配（记 warning），而不是直接失败
    - 所有客户端共用同一个 HttpClient 与全局轮询策略
    """
    http = http or HttpClient()

    verifier: OutboundCallVerifier | None = None
    if config.twilio:
        sid = config.resolve_env(config.twilio.account_sid_env)
        token = config.resolve_env(config.twilio.auth_token_env)
        if sid and token:
            verifier = OutboundCallVerifier(
                account_sid=sid,
                auth_token=token,
                http=http,
                options=config.poll,
                api_base=config.twilio.api_base,
                limit=config.twilio.limit,
            )
        else:
            logger.warning(
                "twilio credentials missing: account_sid_env=%s auth_token_env=%s",
                config.twilio.account_sid_env,
                config.twilio.auth_token_env,
            )

    inbox: Inbox | None = None
    if config.inbox:
        user = config.resolve_env(config.inbox.user_env)
        password = config.resolve_env(config.inbox.password_env)
        if user and password:
            inbox = Inbox(
                host=config.inbox.imap_host,
                username=user,
                password=password,
                port=config.inbox.imap_port,
                mailbox=config.inbox.mailbox,
                address=config.inbox.address,
                options=config.poll,
            )
        else:
            logger.warning(
                "inbox credentials missing: user_env=%s password_env=%s",
                config.inbox.user_env,
                config.inbox.password_env,
            )

    resolver = DnsOverHttpsResolver(http=http, endpoint=config.dns.doh_endpoint)
    return Clients(call_verifier=verifier, inbox=inbox, resolver=resolver)
